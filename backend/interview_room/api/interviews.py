from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse
import logging
import time

from pydantic import ValidationError

from interview_room.api.dependencies import dependency_provider
from interview_room.errors import BlobUploadError, GenerationFailure, InterviewNotFound, ResultGenerationFailure
from interview_room.schemas import InterviewCreate, InterviewRecord, JobDescriptionRequest, ResultRecord
from interview_room.system_metrics import increment_metric

logger = logging.getLogger("interview_room.api.interviews")

router = APIRouter(prefix="/api")


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


async def _require_interview(interview_id: int):
    interview = await dependency_provider.repository.get_interview(interview_id)
    if interview is None:
        raise HTTPException(status_code=404, detail="Interview not found")
    return interview


def build_report_text(interview: InterviewRecord, result: ResultRecord) -> str:
    def _bullets(items) -> list[str]:
        return [f"- {item}" for item in items] or ["- none"]

    lines = [
        "AI Interviewer Results",
        "=====================",
        "",
        f"Overall Rating: {result.overall_rating}/10",
        f"Technical Proficiency: {result.technical_proficiency}",
        f"Duration: {interview.duration or 0} seconds",
        "",
        "Skills Assessment:",
        *_bullets(f"{skill.name}: {skill.score}/10" for skill in result.skill_ratings),
        "",
        "Strengths:",
        *_bullets(result.feedback.strengths),
        "",
        "Areas for Improvement:",
        *_bullets(result.feedback.improvements),
        "",
        "Recommended Learning Paths:",
        *_bullets(result.feedback.learning_paths),
    ]
    return "\n".join(lines) + "\n"


@router.post("/analyze-job-description")
async def analyze_job_description(req: JobDescriptionRequest):
    if not req.job_description.strip():
        raise HTTPException(status_code=400, detail="Job description is required")
    try:
        analysis = await dependency_provider.ai.analyze_job_description(req.job_description)
    except GenerationFailure as exc:
        logger.warning("job description analysis failed | err=%s", exc)
        raise HTTPException(status_code=500, detail="Failed to analyze job description")
    return _dump(analysis)


@router.post("/interviews", status_code=201)
async def create_interview(payload: dict):
    try:
        create = InterviewCreate.model_validate(payload)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Missing required fields")
    if not create.job_description.strip() or not create.skills:
        raise HTTPException(status_code=400, detail="Missing required fields")

    interview = await dependency_provider.repository.create_interview(create)
    return _dump(interview)


@router.get("/interviews")
async def list_interviews():
    rows = await dependency_provider.repository.list_interviews()
    return {"items": [_dump(item) for item in rows]}


@router.get("/interviews/{interview_id}")
async def get_interview(interview_id: int):
    return _dump(await _require_interview(interview_id))


@router.post("/interviews/recording")
async def upload_recording(
    interviewId: str = Form(""),
    recording: UploadFile | None = File(None),
):
    if not str(interviewId or "").strip():
        raise HTTPException(status_code=400, detail="Missing interview ID")
    if recording is None:
        raise HTTPException(status_code=400, detail="Missing recording file")
    try:
        interview_id = int(interviewId)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid interview ID")

    await _require_interview(interview_id)

    content_type = str(recording.content_type or "video/webm").split(";")[0].strip() or "video/webm"
    extension = "mp4" if content_type == "video/mp4" else "webm"
    key = f"interviews/{interview_id}/recording-{int(time.time() * 1000)}.{extension}"
    data = await recording.read()
    logger.info("recording upload | interview_id=%s bytes=%s content_type=%s", interview_id, len(data), content_type)

    try:
        url = await dependency_provider.blob_store.upload(data, key, content_type)
    except BlobUploadError as exc:
        return JSONResponse(
            status_code=500,
            content={"message": "Failed to upload recording", "error": str(exc), "step": "BLOB_UPLOAD"},
        )

    try:
        await dependency_provider.repository.update_interview_recording(interview_id, url)
    except InterviewNotFound:
        raise HTTPException(status_code=404, detail="Interview not found")

    increment_metric("recordings_uploaded", 1)
    return {
        "message": "Recording uploaded successfully",
        "url": url,
        "success": True,
        "interviewId": interview_id,
    }


@router.post("/interviews/{interview_id}/generate-results")
async def generate_results(interview_id: int):
    interview = await _require_interview(interview_id)
    messages = await dependency_provider.repository.get_messages(interview_id)
    try:
        results = await dependency_provider.ai.generate_results(interview, messages)
    except ResultGenerationFailure as exc:
        increment_metric("result_generation_failures", 1)
        logger.warning("result generation failed | interview_id=%s err=%s", interview_id, exc)
        raise HTTPException(status_code=500, detail="Failed to generate results")

    record = await dependency_provider.repository.create_result(interview_id, results)
    await dependency_provider.repository.update_interview_status(interview_id, "completed")
    return _dump(record)


@router.get("/interviews/{interview_id}/results")
async def get_results(interview_id: int):
    interview = await _require_interview(interview_id)
    record = await dependency_provider.repository.get_result_by_interview_id(interview_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Results not found")
    return {"interview": _dump(interview), "result": _dump(record)}


@router.get("/interviews/{interview_id}/download-report")
async def download_report(interview_id: int):
    record = await dependency_provider.repository.get_result_by_interview_id(interview_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Results not found")
    interview = await _require_interview(interview_id)

    logger.info("report download | interview_id=%s", interview_id)
    return PlainTextResponse(
        build_report_text(interview, record),
        headers={"Content-Disposition": f'attachment; filename="interview-report-{interview_id}.txt"'},
    )
