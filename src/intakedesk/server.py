import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from intakedesk.cache import CachedTracker
from intakedesk.config import Settings, validate_config
from intakedesk.crm import CrmClient
from intakedesk.directory import UserDirectory
from intakedesk.errors import IntakeError, InvariantViolation, TrackerError
from intakedesk.oracle import OracleClient
from intakedesk.session_store import InMemorySessionStore, RestSessionStore, resolve_active_session
from intakedesk.state_machine import IntakeMachine
from intakedesk.tickets import TicketSink
from intakedesk.tracker import TrackerClient
from intakedesk.transcript import to_json_array
from intakedesk.validation import normalize_email, parse_id_list, validate_email

logger = logging.getLogger(__name__)


class BadRequest(Exception):
    pass


def _error(message: str, status_code: int, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise BadRequest("Request body must be JSON")
    if not isinstance(body, dict):
        raise BadRequest("Request body must be a JSON object")
    return body


def _use_cache(request: Request) -> bool:
    return request.query_params.get("cache") != "false"


def create_app(
    settings: Settings | None = None,
    *,
    store=None,
    oracle=None,
    tracker=None,
    crm=None,
) -> FastAPI:
    """Build the application. Collaborators may be injected for tests."""
    settings = settings or Settings.from_env()

    if store is None:
        if settings.uses_rest_store:
            store = RestSessionStore(settings.supabase_url, settings.supabase_key)
        else:
            store = InMemorySessionStore()
    if oracle is None:
        oracle = OracleClient(
            api_key=settings.anthropic_api_key,
            model=settings.oracle_model,
            max_tokens=settings.oracle_max_tokens,
            timeout=settings.oracle_timeout_seconds,
            base_url=settings.anthropic_base_url,
        )
    if tracker is None:
        tracker = TrackerClient(api_key=settings.linear_api_key, api_url=settings.linear_api_url)
    if crm is None and settings.hubspot_api_key:
        crm = CrmClient(access_token=settings.hubspot_api_key)

    sink = TicketSink(
        tracker,
        team_id=settings.tracker_team_id,
        state_id=settings.tracker_initial_state_id,
        project_id=settings.tracker_project_id,
    )
    machine = IntakeMachine(store=store, oracle=oracle, sink=sink)
    boards = CachedTracker(tracker)
    directory = UserDirectory(crm=crm)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for client in (oracle, tracker, crm, store):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    app = FastAPI(title="Intake Desk", lifespan=lifespan)
    app.state.settings = settings
    app.state.machine = machine
    app.state.store = store
    app.state.boards = boards
    app.state.directory = directory

    @app.exception_handler(BadRequest)
    async def bad_request(request: Request, exc: BadRequest):
        return _error(str(exc), 400)

    @app.exception_handler(InvariantViolation)
    async def invariant_violation(request: Request, exc: InvariantViolation):
        logger.error("Invariant violated on %s: %s", request.url.path, exc)
        return _error("Internal server error", 500)

    @app.exception_handler(IntakeError)
    async def intake_error(request: Request, exc: IntakeError):
        logger.error("Turn failed on %s: %s", request.url.path, exc)
        extra = {}
        if getattr(exc, "ticket_id", ""):
            extra = {"ticketId": exc.ticket_id, "ticketIdentifier": exc.ticket_identifier}
        return _error(str(exc), 502, retryable=exc.retryable, **extra)

    @app.exception_handler(TrackerError)
    async def tracker_error(request: Request, exc: TrackerError):
        return _error(str(exc), 502)

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/auth/identify")
    async def identify(request: Request):
        body = await _read_json(request)
        email = validate_email(body.get("email", ""))
        if not email:
            raise BadRequest("A valid email is required")
        user = await directory.identify(email, name=body.get("name") or "")
        return {"user": user.to_dict()}

    @app.post("/session")
    async def start_session(request: Request):
        body = await _read_json(request)
        email = validate_email(body.get("email", ""))
        if not email:
            raise BadRequest("A valid email is required")
        session, reused = await resolve_active_session(
            store,
            email,
            timeout=settings.session_timeout,
            user_name=body.get("name") or "",
            team=body.get("team") or "",
            team_id=body.get("teamId") or "",
            external_contact_id=body.get("externalContactId") or "",
        )
        logger.info("Session %s %s for %s", session.session_id, "reused" if reused else "created", email)
        return {
            "session": {
                "sessionId": session.session_id,
                "state": session.state.value,
                "messages": to_json_array(session.messages),
            }
        }

    @app.post("/chat")
    async def chat(request: Request):
        body = await _read_json(request)
        session_id = body.get("sessionId")
        message = (body.get("message") or "").strip()
        user_email = normalize_email(body.get("userEmail", ""))
        if not session_id or not message or not user_email:
            raise BadRequest("sessionId, message, and userEmail are required")
        result = await machine.handle_message(session_id, message, user_email)
        return result.to_response()

    @app.get("/tracker/projects")
    async def projects(request: Request):
        label = request.query_params.get("label") or settings.public_label
        data, cached = await boards.projects(label, use_cache=_use_cache(request))
        return {"projects": data, "cached": cached}

    @app.get("/tracker/issues")
    async def issues(request: Request):
        project_ids = parse_id_list(request.query_params.get("projectIds"))
        if not project_ids:
            return {"issues": [], "cached": False}
        data, cached = await boards.issues(project_ids, use_cache=_use_cache(request))
        return {"issues": data, "cached": cached}

    @app.get("/tracker/states")
    async def states(request: Request):
        team_ids = parse_id_list(request.query_params.get("teamIds"))
        label = request.query_params.get("label") or settings.public_label
        data, cached = await boards.workflow_states(team_ids, label=label, use_cache=_use_cache(request))
        return {"states": data, "cached": cached}

    @app.post("/tracker/sync")
    async def sync(request: Request):
        body = await _read_json(request)
        label = body.get("label") or ""
        project_ids = parse_id_list(body.get("projectIds"))
        if not label and not project_ids:
            raise BadRequest("Either label or projectIds is required")
        results = await boards.sync(label=label, project_ids=project_ids)
        return {"success": True, **results}

    @app.get("/tracker/comments")
    async def list_comments(request: Request):
        issue_id = request.query_params.get("issueId")
        if not issue_id:
            raise BadRequest("issueId is required")
        comments = await tracker.fetch_issue_comments(issue_id)
        return {"comments": [c.to_dict() for c in comments]}

    @app.post("/tracker/comments")
    async def add_comment(request: Request):
        body = await _read_json(request)
        issue_id = body.get("issueId")
        content = (body.get("content") or "").strip()
        if not issue_id or not content:
            raise BadRequest("issueId and content are required")
        author = body.get("authorName") or body.get("authorEmail")
        text = f"{content}\n\n(posted by {author})" if author else content
        comment = await tracker.create_comment(issue_id, text)
        return {"comment": comment.to_dict()}

    return app


def main():
    load_dotenv()
    validate_config()
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", str(settings.port)))
    uvicorn.run(create_app(settings), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
