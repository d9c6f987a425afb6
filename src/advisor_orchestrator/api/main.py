"""FastAPI app entrypoint for advisor-orchestrator."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from advisor_orchestrator.assistant.graph import SimplePathDeps
from advisor_orchestrator.assistant.service import AssistantService
from advisor_orchestrator.config.settings import Settings, get_settings
from advisor_orchestrator.errors import TaskNotFoundError, TaskOwnershipError
from advisor_orchestrator.llm.gateway import LLMGateway, build_llm_gateway
from advisor_orchestrator.retrieval import ContextRetriever, build_context_retriever
from advisor_orchestrator.rules import (
    InMemoryRuleStore,
    ProactiveRule,
    ProactiveRuleInput,
    RuleEngine,
    RuleStore,
)
from advisor_orchestrator.storage import InMemoryTaskStorage, PostgresTaskStorage, Task, TaskStorage
from advisor_orchestrator.storage.models import NewTask, TaskStatus
from advisor_orchestrator.tools import ToolExecutor, build_registry, list_tools
from advisor_orchestrator.tools.google import GoogleWorkspaceClient
from advisor_orchestrator.tools.hubspot import HubSpotClient
from advisor_orchestrator.users import InMemoryUserDirectory, UserContext
from advisor_orchestrator.workflow.classifier import WorkflowNeeded, classify
from advisor_orchestrator.workflow.coordinator import ResumeCoordinator
from advisor_orchestrator.workflow.engine import WorkflowEngine
from advisor_orchestrator.workflow.queue import MessageFetcher, ResumeQueue
from advisor_orchestrator.workflow.sweeper import sweep_stale_waiting
from advisor_orchestrator.workflow.webhooks import parse_calendar_webhook, parse_gmail_webhook

logger = logging.getLogger(__name__)


class AssistantRequest(BaseModel):
    user_id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class AssistantResponse(BaseModel):
    response: str
    waiting: bool
    task: Task | None = None
    tools_used: list[str] = Field(default_factory=list)
    context_used: list[dict[str, Any]] = Field(default_factory=list)


class CredentialsRequest(BaseModel):
    email: str | None = None
    google_access_token: str | None = None
    hubspot_access_token: str | None = None


class ResumeRequest(BaseModel):
    user_id: str = Field(min_length=1)
    event_kind: Literal["email_reply", "calendar_response"] = "email_reply"
    payload: dict[str, Any] = Field(default_factory=dict)


class ResumeResponse(BaseModel):
    resumed: list[dict[str, str]] = Field(default_factory=list)


def _build_storage(settings: Settings) -> TaskStorage:
    window = settings.match_recent_task_minutes
    if settings.storage_backend.lower().strip() == "memory":
        return InMemoryTaskStorage(recent_window_minutes=window)
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set ADVISOR_AGENT_DATABASE_URL "
            "or ORCHESTRATOR_DATABASE_URL before starting the app."
        )
    return PostgresTaskStorage(database_url, recent_window_minutes=window)


def _build_google(settings: Settings) -> GoogleWorkspaceClient:
    return GoogleWorkspaceClient(
        gmail_base_url=settings.gmail_api_base_url,
        calendar_base_url=f"{settings.google_api_base_url.rstrip('/')}/calendar/v3",
        timeout_s=settings.tool_timeout_s,
    )


def _build_tools(settings: Settings, google: GoogleWorkspaceClient) -> ToolExecutor:
    hubspot = HubSpotClient(base_url=settings.hubspot_api_base_url, timeout_s=settings.tool_timeout_s)
    return ToolExecutor(
        registry=build_registry(google=google, hubspot=hubspot),
        tool_timeout_s=settings.tool_timeout_s,
        max_retries=settings.tool_max_retries,
        backoff_s=settings.tool_retry_backoff_s,
    )


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: TaskStorage | None,
    users_override: InMemoryUserDirectory | None,
    tools_override: ToolExecutor | None,
    llm_override: LLMGateway | None,
    retriever_override: ContextRetriever | None,
    rules_override: RuleStore | None,
    fetcher_override: MessageFetcher | None,
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "storage"):
        app.state.storage = storage_override or _build_storage(settings)
        app.state.storage.migrate()

    if not hasattr(app.state, "engine"):
        users = users_override or InMemoryUserDirectory()
        google = _build_google(settings)
        tools = tools_override or _build_tools(settings, google)
        llm = llm_override or build_llm_gateway(settings)
        engine = WorkflowEngine(storage=app.state.storage, tools=tools, llm=llm, settings=settings)
        coordinator = ResumeCoordinator(storage=app.state.storage, engine=engine)
        app.state.users = users
        app.state.engine = engine
        app.state.coordinator = coordinator
        app.state.rules = rules_override or InMemoryRuleStore()
        app.state.resume_queue = ResumeQueue(
            coordinator,
            max_workers=settings.resume_workers,
            max_finished_jobs=settings.resume_job_history,
            message_fetcher=fetcher_override or google.fetch_new_messages,
            rule_engine=RuleEngine(store=app.state.rules, tools=tools),
        )
        app.state.assistant = AssistantService(
            engine=engine,
            deps=SimplePathDeps(
                retriever=retriever_override or build_context_retriever(settings),
                llm=llm,
                tools=tools,
                users=users,
                context_limit=settings.context_limit,
                similarity_threshold=settings.similarity_threshold,
            ),
        )


def create_app(
    *,
    storage: TaskStorage | None = None,
    settings_override: Settings | None = None,
    users: InMemoryUserDirectory | None = None,
    tools: ToolExecutor | None = None,
    llm: LLMGateway | None = None,
    retriever: ContextRetriever | None = None,
    rules: RuleStore | None = None,
    message_fetcher: MessageFetcher | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.basicConfig(level=settings.log_level)

    def _init(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            storage_override=storage,
            users_override=users,
            tools_override=tools,
            llm_override=llm,
            retriever_override=retriever,
            rules_override=rules,
            fetcher_override=message_fetcher,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _init(app)
        yield
        if hasattr(app.state, "resume_queue"):
            app.state.resume_queue.shutdown(wait=False)

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _init(app)

    def _state(request: Request) -> Any:
        if not hasattr(request.app.state, "engine"):
            _init(request.app)
        return request.app.state

    def _user(request: Request, user_id: str) -> UserContext:
        return _state(request).users.resolve(user_id)

    def _owned_task(request: Request, task_id: str, user_id: str) -> Task:
        try:
            return _state(request).storage.get_owned_task(task_id, user_id)
        except (TaskNotFoundError, TaskOwnershipError) as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tools")
    def tools_index(request: Request) -> dict[str, list[str]]:
        return {"tools": list_tools(_state(request).engine.tools.registry)}

    @app.put("/users/{user_id}/credentials")
    def save_credentials(user_id: str, payload: CredentialsRequest, request: Request) -> dict[str, Any]:
        user = UserContext(user_id=user_id, **payload.model_dump())
        _state(request).users.save(user)
        return {
            "user_id": user_id,
            "google_connected": bool(user.google_access_token),
            "hubspot_connected": bool(user.hubspot_access_token),
        }

    @app.post("/users/{user_id}/rules", response_model=ProactiveRule)
    def create_rule(user_id: str, payload: ProactiveRuleInput, request: Request) -> ProactiveRule:
        rule = ProactiveRule(user_id=user_id, **payload.model_dump())
        _state(request).rules.save(rule)
        logger.info(
            "rules event=created rule_id=%s user_id=%s trigger=%s",
            rule.rule_id,
            user_id,
            rule.trigger_type,
        )
        return rule

    @app.get("/users/{user_id}/rules", response_model=list[ProactiveRule])
    def list_rules(user_id: str, request: Request) -> list[ProactiveRule]:
        return _state(request).rules.list_rules(user_id)

    @app.post("/assistant/requests", response_model=AssistantResponse)
    def handle_request(payload: AssistantRequest, request: Request) -> AssistantResponse:
        user = _user(request, payload.user_id)
        result = _state(request).assistant.handle_request(user, payload.text)
        return AssistantResponse.model_validate(result)

    @app.get("/users/{user_id}/tasks", response_model=list[Task])
    def list_user_tasks(
        user_id: str,
        request: Request,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        statuses = [status] if status else None
        return _state(request).storage.list_tasks(user_id, statuses=statuses)

    @app.get("/users/{user_id}/tasks/stats")
    def user_task_stats(user_id: str, request: Request) -> dict[str, int]:
        return _state(request).storage.task_stats(user_id)

    @app.get("/tasks/{task_id}", response_model=Task)
    def get_task(task_id: str, user_id: str, request: Request) -> Task:
        return _owned_task(request, task_id, user_id)

    @app.post("/tasks/{task_id}/retry", response_model=AssistantResponse)
    def retry_task(task_id: str, user_id: str, request: Request) -> AssistantResponse:
        task = _owned_task(request, task_id, user_id)
        if task.status != "failed":
            raise HTTPException(status_code=409, detail="Only failed tasks can be retried")

        classification = classify(task.original_request)
        if not isinstance(classification, WorkflowNeeded):
            raise HTTPException(status_code=409, detail="Request no longer maps to a workflow")

        state = _state(request)
        engine: WorkflowEngine = state.engine
        retried = engine.storage.create_task(
            NewTask(
                user_id=user_id,
                task_type=task.task_type,
                original_request=task.original_request,
                workflow_state={**classification.extracted_data, "retried_from": task.task_id},
                next_step=classification.initial_step.value,
                max_retries=task.max_retries,
            )
        )
        logger.info("task event=retried task_id=%s new_task_id=%s", task.task_id, retried.task_id)
        outcome = engine.drive(retried, _user(request, user_id))
        return AssistantResponse(
            response=outcome.summary,
            waiting=outcome.task.status == "waiting",
            task=outcome.task,
        )

    @app.post("/webhooks/gmail/{user_id}")
    def gmail_webhook(user_id: str, body: dict[str, Any], request: Request) -> dict[str, Any]:
        try:
            event = parse_gmail_webhook(body)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not event.incoming:
            return {"status": "ignored", "reason": "not an incoming message"}
        job_id = _state(request).resume_queue.submit(
            _user(request, user_id), event.event_kind, event.payload
        )
        return {"status": "queued", "job_id": job_id}

    @app.post("/webhooks/calendar/{user_id}")
    def calendar_webhook(user_id: str, body: dict[str, Any], request: Request) -> dict[str, Any]:
        try:
            event = parse_calendar_webhook(body)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        job_id = _state(request).resume_queue.submit(
            _user(request, user_id), event.event_kind, event.payload
        )
        return {"status": "queued", "job_id": job_id}

    @app.post("/resume", response_model=ResumeResponse)
    def resume(payload: ResumeRequest, request: Request) -> ResumeResponse:
        outcomes = _state(request).coordinator.resume_from_event(
            _user(request, payload.user_id),
            payload.payload,
            event_kind=payload.event_kind,
        )
        return ResumeResponse(resumed=[outcome.as_dict() for outcome in outcomes])

    @app.get("/resume-jobs/{job_id}")
    def get_resume_job(job_id: str, request: Request) -> dict[str, Any]:
        job = _state(request).resume_queue.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Resume job not found")
        return job.as_dict()

    @app.post("/maintenance/sweep-stale")
    def sweep_stale(request: Request) -> dict[str, Any]:
        expired = sweep_stale_waiting(
            _state(request).storage,
            stale_after_hours=settings.stale_waiting_after_hours,
        )
        return {
            "enabled": settings.stale_waiting_after_hours is not None,
            "expired": [task.task_id for task in expired],
        }

    return app


app = create_app()
