"""HTTP API for the support desk: accounts, messaging and product tools."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Union

import anyio
from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .ai import ImageGenerationClient, ProductExplorer, TextGenerationClient
from .config import Settings, load_settings
from .database import Database
from .errors import (
    AuthenticationError,
    NotFound,
    PermissionDenied,
    ProfileInsertError,
    SupportDeskError,
    ValidationError,
)
from .messaging import MessageService
from .models import Actor, Role
from .provisioning import ProvisionRequest, ProvisioningWorkflow
from .security import SESSION_COOKIE_NAME, SessionAuth
from .sessions import SessionManager

logger = logging.getLogger("supportdesk.service")


class SignupRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AccountCreateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    manager_id: Optional[str] = None


class SendMessageRequest(BaseModel):
    recipient_id: Optional[str] = None
    content: Optional[str] = None
    broadcast: bool = False


class DescriptionRequest(BaseModel):
    product: Optional[str] = None
    brand: Optional[str] = None
    color: Optional[str] = None
    features: Union[str, List[str], None] = None


class ImageRequest(BaseModel):
    prompt: Optional[str] = None


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        return "Malformed JSON body"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = errors[0].get("msg") or "Invalid request"
        return f"{location}: {message}" if location else message
    return "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": message}``."""

    @app.exception_handler(SupportDeskError)
    async def handle_support_desk_error(request: Request, exc: SupportDeskError) -> JSONResponse:
        if isinstance(exc, ProfileInsertError) and not exc.compensated:
            logger.error(
                "Orphaned identity %s left behind by %s %s",
                exc.identity_id,
                request.method,
                request.url.path,
            )
        return _error_response(exc.status_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, _validation_message(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error during %s %s", request.method, request.url.path)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_api_routes(
    app: FastAPI,
    database: Database,
    *,
    sessions: SessionManager,
    current_actor: SessionAuth,
    text_client: TextGenerationClient,
    image_client: ImageGenerationClient,
    secure_cookies: bool,
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    provisioning = ProvisioningWorkflow(database, database)
    messages = MessageService(database, database)
    explorer = ProductExplorer(text_client, image_client)

    async def run_blocking(func: Callable[..., Any], *args: Any) -> Any:
        return await anyio.to_thread.run_sync(functools.partial(func, *args))

    def issue_session_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=sessions.cookie_max_age,
            secure=secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/signup", status_code=status.HTTP_201_CREATED)
    async def signup(request: SignupRequest) -> Dict[str, Any]:
        profile = provisioning.signup_customer(
            ProvisionRequest(name=request.name, email=request.email, password=request.password)
        )
        return {"user": profile.to_dict()}

    @app.post("/login")
    async def login(request: LoginRequest, http_request: Request, response: Response) -> Dict[str, Any]:
        email = (request.email or "").strip()
        password = request.password or ""
        if not email or not password:
            raise ValidationError("Email and password are required")

        identity = database.authenticate(email, password)
        if identity is None:
            logger.warning("Failed sign-in attempt for %s", email)
            raise AuthenticationError("Invalid email or password")

        profile = database.get_profile(identity.id)
        if profile is None:
            logger.warning("Identity %s signed in without a profile", identity.id)
            raise AuthenticationError("Account has no profile")

        existing_token = http_request.cookies.get(SESSION_COOKIE_NAME)
        if existing_token:
            sessions.destroy(existing_token)

        token = sessions.create(Actor(id=profile.id, role=profile.role))
        logger.info("User %s signed in as %s", profile.id, profile.role.value)
        issue_session_cookie(response, token)
        return {"token": token, "user": profile.to_dict()}

    @app.post("/logout")
    async def logout(
        http_request: Request,
        response: Response,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, bool]:
        sessions.destroy(await current_actor.token(http_request))
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        logger.info("User %s signed out", actor.id)
        return {"success": True}

    @app.get("/me")
    async def me(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
        profile = database.get_profile(actor.id)
        if profile is None:
            raise NotFound("User not found")
        return {"user": profile.to_dict()}

    @app.post("/create-manager", status_code=status.HTTP_201_CREATED)
    async def create_manager(
        request: AccountCreateRequest,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, Any]:
        profile = provisioning.provision_user(
            actor,
            ProvisionRequest(
                name=request.name,
                email=request.email,
                password=request.password,
                role=Role.MANAGER,
                manager_id=request.manager_id,
            ),
        )
        return {"user": profile.to_dict()}

    @app.post("/create-team-member", status_code=status.HTTP_201_CREATED)
    async def create_team_member(
        request: AccountCreateRequest,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, Any]:
        profile = provisioning.provision_user(
            actor,
            ProvisionRequest(
                name=request.name,
                email=request.email,
                password=request.password,
                role=Role.TEAM,
                manager_id=request.manager_id,
            ),
        )
        return {"user": profile.to_dict()}

    @app.post("/send-message")
    async def send_message(
        request: SendMessageRequest,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, Any]:
        if request.broadcast:
            report = messages.broadcast(actor, request.content)
            return {"success": True, "delivered": list(report.delivered)}

        message = messages.send_message(actor, request.recipient_id, request.content)
        return {"success": True, "message": message.to_dict()}

    @app.get("/messages")
    async def conversation(
        other_id: Optional[str] = Query(default=None, alias="with"),
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, Any]:
        history = messages.conversation(actor, other_id)
        return {"messages": [message.to_dict() for message in history]}

    @app.get("/inbox")
    async def inbox(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
        return {"messages": [message.to_dict() for message in messages.inbox(actor)]}

    @app.get("/contacts")
    async def contacts(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
        return {"users": [profile.to_dict() for profile in messages.contacts(actor)]}

    @app.get("/managers")
    async def list_managers(actor: Actor = Depends(current_actor)) -> Dict[str, Any]:
        if actor.role is not Role.ADMIN:
            raise PermissionDenied("Forbidden: Admins only")
        return {"users": [profile.to_dict() for profile in database.list_profiles([Role.MANAGER])]}

    @app.get("/team-members")
    async def list_team_members(
        manager_id: Optional[str] = Query(default=None),
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, Any]:
        if actor.role is Role.TEAM:
            return team_view(actor)
        if actor.role is Role.MANAGER:
            members = database.list_team_members(actor.id)
        elif actor.role is Role.ADMIN:
            if manager_id:
                members = database.list_team_members(manager_id)
            else:
                members = database.list_profiles([Role.TEAM])
        else:
            raise PermissionDenied("Forbidden: Team members, Managers or Admins only")
        return {"users": [profile.to_dict() for profile in members]}

    def team_view(actor: Actor) -> Dict[str, Any]:
        """A team member's manager and the teammates who share that manager."""

        profile = database.get_profile(actor.id)
        if profile is None or profile.manager_id is None:
            raise NotFound("User not found")
        manager = database.get_profile(profile.manager_id)
        peers = [
            member
            for member in database.list_team_members(profile.manager_id)
            if member.id != profile.id
        ]
        return {
            "manager": manager.to_dict() if manager is not None else None,
            "users": [member.to_dict() for member in peers],
        }

    @app.post("/generate-description")
    async def generate_description(
        request: DescriptionRequest,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, str]:
        description = await run_blocking(
            text_client.generate_description,
            request.product,
            request.brand,
            request.color,
            request.features,
        )
        return {"description": description}

    @app.post("/text-to-image")
    async def text_to_image(
        request: ImageRequest,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, str]:
        image = await run_blocking(image_client.generate_image, request.prompt)
        return {"image": image.to_data_url()}

    @app.post("/explore")
    async def explore(
        request: DescriptionRequest,
        actor: Actor = Depends(current_actor),
    ) -> Dict[str, Any]:
        result = await run_blocking(
            explorer.explore,
            request.product,
            request.brand,
            request.color,
            request.features,
        )
        return result.to_dict()


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    session_manager: SessionManager | None = None,
    text_client: TextGenerationClient | None = None,
    image_client: ImageGenerationClient | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the support desk."""

    app_settings = settings or load_settings()
    db = database or Database(app_settings.database_path)
    db.initialize()

    if not app_settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    sessions = session_manager or SessionManager(ttl=app_settings.session_ttl)

    app = FastAPI(
        title="Support Desk API",
        version="0.1.0",
        description="Role-based customer support messaging with product content tools.",
    )
    app.state.database = db
    app.state.session_manager = sessions

    register_exception_handlers(app)
    register_api_routes(
        app,
        db,
        sessions=sessions,
        current_actor=SessionAuth(sessions),
        text_client=text_client or TextGenerationClient(app_settings.ai.text),
        image_client=image_client or ImageGenerationClient(app_settings.ai.image),
        secure_cookies=app_settings.secure_cookies,
    )
    return app


__all__ = ["create_app", "register_api_routes", "register_exception_handlers"]
