"""Quart application exposing course ingestion, search and chat."""
from pathlib import PurePath
from typing import Optional

import structlog
from quart import Blueprint, Quart, current_app, jsonify, request

from coursechat import config
from coursechat.errors import (
    CourseChatError,
    CourseConflictError,
    CourseNotFoundError,
    InputValidationError,
    ProviderError,
    RetrievalError,
)
from coursechat.logging_setup import configure_logging
from coursechat.rag.ingest import build_metadata, decode_upload, validate_upload
from coursechat.services import Services, build_services

logger = structlog.get_logger()

MAX_MESSAGE_LENGTH = 2000

api = Blueprint("api", __name__)


def _services() -> Services:
    return current_app.config["SERVICES"]


def _error_status(error: CourseChatError) -> int:
    if isinstance(error, InputValidationError):
        return 400
    if isinstance(error, CourseNotFoundError):
        return 404
    if isinstance(error, CourseConflictError):
        return 409
    if isinstance(error, ProviderError):
        return 503 if error.retryable else 502
    if isinstance(error, RetrievalError):
        return 503 if error.retryable else 500
    return 503 if error.retryable else 500


async def handle_course_chat_error(error: CourseChatError):
    """Map core errors to JSON responses."""
    status = _error_status(error)
    body = {
        "error": type(error).__name__,
        "message": error.message,
        "retryable": error.retryable,
    }
    if isinstance(error, InputValidationError):
        body["details"] = error.errors

    if status >= 500:
        logger.error("request_failed", status=status, error=error.message, error_type=type(error).__name__)
    else:
        logger.info("request_rejected", status=status, error=error.message, error_type=type(error).__name__)
    return jsonify(body), status


def _parse_limit(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        limit = 0
    if limit < 1:
        raise InputValidationError(
            "Invalid limit",
            errors=[{"field": "limit", "message": "Limit must be a positive integer"}],
        )
    return limit


@api.route("/api/courses/upload", methods=["POST"])
async def upload_course():
    """Upload a markdown course file (multipart ``file`` plus form fields).

    Returns JSON:
    {
        "success": true,
        "course_id": "...",
        "chunk_count": 12,
        "nano_count": 3,
        "unit_count": 7,
        "asset_count": 2
    }
    """
    files = await request.files
    form = await request.form

    upload = files.get("file")
    if upload is None:
        raise InputValidationError(
            "No file uploaded",
            errors=[{"field": "file", "message": "A markdown file is required"}],
        )

    data = upload.read()
    validate_upload(upload.filename, len(data))
    content = decode_upload(data)

    metadata = build_metadata(
        title=form.get("title") or PurePath(upload.filename).stem,
        technology=form.get("technology"),
        tags=form.get("tags"),
        slug=form.get("slug"),
        uploaded_by=request.headers.get("X-User-Id") or form.get("uploaded_by"),
    )

    summary = await _services().pipeline.ingest_course(metadata, content)

    return jsonify({
        "success": True,
        "message": "Course uploaded and processed successfully",
        **summary.to_dict(),
    }), 201


@api.route("/api/courses", methods=["POST"])
async def create_course():
    """Create a course from a JSON body with ``content_md`` and metadata."""
    data = await request.get_json(silent=True) or {}

    content = data.get("content_md") or ""
    if not isinstance(content, str) or not content.strip():
        raise InputValidationError(
            "Content is required",
            errors=[{"field": "content_md", "message": "Content is required"}],
        )

    metadata = build_metadata(
        title=data.get("title"),
        technology=data.get("technology"),
        tags=data.get("tags"),
        slug=data.get("slug"),
        uploaded_by=request.headers.get("X-User-Id") or data.get("uploaded_by"),
    )
    summary = await _services().pipeline.ingest_course(metadata, content)
    return jsonify({"success": True, **summary.to_dict()}), 201


@api.route("/api/courses", methods=["GET"])
async def list_courses():
    technology = request.args.get("technology")
    courses = _services().pipeline.list_courses(technology)
    return jsonify({"courses": [c.to_dict() for c in courses]})


@api.route("/api/courses/<course_id>", methods=["GET"])
async def get_course(course_id: str):
    course = _services().pipeline.get_course(course_id)
    if course is None:
        raise CourseNotFoundError(course_id)
    return jsonify(course)


@api.route("/api/courses/<course_id>", methods=["DELETE"])
async def delete_course(course_id: str):
    removed = _services().pipeline.delete_course(course_id)
    return jsonify({
        "success": True,
        "message": "Course deleted successfully",
        "vectors_removed": removed,
    })


@api.route("/api/search", methods=["POST"])
async def search():
    """Semantic search over course chunks.

    Expects JSON body:
    {
        "query": "text",
        "technology": "optional filter",
        "course_id": "optional filter",
        "limit": 5
    }
    """
    data = await request.get_json(silent=True) or {}
    query = (data.get("query") or "").strip()
    if not query:
        raise InputValidationError(
            "Query is required",
            errors=[{"field": "query", "message": "Query cannot be empty"}],
        )

    result = await _services().retriever.search(
        query,
        technology=data.get("technology") or None,
        limit=_parse_limit(data.get("limit")),
        course_id=data.get("course_id") or None,
    )
    return jsonify(result.to_dict())


@api.route("/api/chat", methods=["POST"])
async def chat():
    """Answer a question from course material.

    Expects JSON body:
    {
        "message": "user message text",
        "role": "optional audience role",
        "technology": "optional technology focus"
    }
    """
    data = await request.get_json(silent=True) or {}
    message = (data.get("message") or "").strip()

    if not message:
        raise InputValidationError(
            "Message is required",
            errors=[{"field": "message", "message": "Message cannot be empty"}],
        )
    if len(message) > MAX_MESSAGE_LENGTH:
        raise InputValidationError(
            "Message too long",
            errors=[{"field": "message", "message": f"Max {MAX_MESSAGE_LENGTH} characters"}],
        )

    logger.info("chat_request_received", message_length=len(message), technology=data.get("technology"))

    reply = await _services().chat.chat(
        message,
        role=data.get("role") or None,
        technology=data.get("technology") or None,
    )
    return jsonify(reply.to_dict())


@api.route("/api/chat/suggestions", methods=["GET"])
async def chat_suggestions():
    suggestions = _services().chat.suggestions(request.args.get("technology"))
    return jsonify({"suggestions": suggestions})


@api.route("/api/technology/overview", methods=["GET"])
async def technology_overview():
    return jsonify({"technologies": _services().chat.technology_overview()})


@api.route("/health/ready")
async def health_ready():
    """Readiness probe - check if app can serve requests.

    Checks:
    - Ollama service is reachable
    - Chat and embedding models are available
    """
    checks = {
        "status": "healthy",
        "ollama": False,
        "models": False,
        "vector_count": _services().vector_store.ntotal,
    }

    try:
        models = await _services().llm_client.list_models()
        checks["ollama"] = True

        missing = [m for m in (config.CHAT_MODEL, config.EMBEDDING_MODEL) if m not in models]
        if missing:
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing models: {', '.join(missing)}"
        else:
            checks["models"] = True

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503


@api.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


def create_app(services: Optional[Services] = None) -> Quart:
    """Build the Quart app; services are created at startup when not given."""
    configure_logging()

    app = Quart(__name__)
    app.config["SERVICES"] = services
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES + 1024 * 1024
    app.register_blueprint(api)
    app.register_error_handler(CourseChatError, handle_course_chat_error)

    @app.before_serving
    async def startup():
        if app.config["SERVICES"] is None:
            app.config["SERVICES"] = build_services()

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    async def payload_too_large(error):
        logger.info("request_rejected", status=413, error="payload too large")
        return jsonify({
            "error": "InputValidationError",
            "message": "File too large",
            "retryable": False,
            "details": [{
                "field": "file",
                "message": f"Request body exceeds limit of {app.config['MAX_CONTENT_LENGTH']} bytes",
            }],
        }), 413

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
