"""
A2A Task Protocol Data Models

Pydantic models for the task-oriented A2A protocol carried over JSON-RPC 2.0:
tasks, messages, parts, artifacts, streaming events, request parameters,
response envelopes and the protocol error taxonomy. Field names follow the
camelCase wire format.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


# ===== FOUNDATIONAL TYPES =====

class TaskState(str, Enum):
    """Defines the lifecycle states of a Task."""
    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"
    UNKNOWN = "unknown"


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.CANCELED, TaskState.FAILED})


# ===== CONTENT PARTS =====

class PartBase(BaseModel):
    """Defines base properties common to all message or artifact parts."""
    metadata: Optional[Dict[str, Any]] = None


class TextPart(PartBase):
    """Represents a text segment within a message or artifact."""
    type: Literal["text"] = "text"
    text: str


class FileContent(BaseModel):
    """File payload carried either inline (base64) or by reference."""
    name: Optional[str] = None
    mimeType: Optional[str] = None
    bytes: Optional[str] = None
    uri: Optional[str] = None

    @model_validator(mode="after")
    def check_content_source(self) -> "FileContent":
        if (self.bytes is None) == (self.uri is None):
            raise ValueError("File content must define exactly one of 'bytes' or 'uri'")
        return self


class FilePart(PartBase):
    """Represents a file segment within a message or artifact."""
    type: Literal["file"] = "file"
    file: FileContent


class DataPart(PartBase):
    """Represents a structured data segment within a message or artifact."""
    type: Literal["data"] = "data"
    data: Dict[str, Any]


Part = Annotated[Union[TextPart, FilePart, DataPart], Field(discriminator="type")]


# ===== TASK AND MESSAGE TYPES =====

class Message(BaseModel):
    """A single conversational turn between a user and an agent."""
    role: Literal["user", "agent"]
    parts: List[Part]
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("parts")
    def validate_parts(cls, v):
        if not v:
            raise ValueError("Message must contain at least one part")
        return v


class Artifact(BaseModel):
    """A chunk of output produced by an agent, addressed by its slot index."""
    name: Optional[str] = None
    description: Optional[str] = None
    parts: List[Part]
    metadata: Optional[Dict[str, Any]] = None
    index: int = 0
    append: Optional[bool] = None
    lastChunk: Optional[bool] = None


class TaskStatus(BaseModel):
    """Represents the status of a task at a specific point in time."""
    state: TaskState
    message: Optional[Message] = None
    timestamp: Optional[str] = None


class Task(BaseModel):
    """A single, stateful unit of work tracked across exchanges by its id."""
    id: str
    sessionId: Optional[str] = None
    status: TaskStatus
    artifacts: Optional[List[Artifact]] = None
    history: Optional[List[Message]] = None
    metadata: Optional[Dict[str, Any]] = None


# ===== EVENT TYPES =====

class TaskStatusUpdateEvent(BaseModel):
    """Notifies a subscriber that a task's status changed."""
    type: Literal["taskStatusUpdate"] = "taskStatusUpdate"
    id: str
    status: TaskStatus
    final: bool = False
    metadata: Optional[Dict[str, Any]] = None


class TaskArtifactUpdateEvent(BaseModel):
    """Notifies a subscriber that an artifact chunk was produced."""
    type: Literal["taskArtifactUpdate"] = "taskArtifactUpdate"
    id: str
    artifact: Artifact
    metadata: Optional[Dict[str, Any]] = None


TaskStreamEvent = Annotated[
    Union[TaskStatusUpdateEvent, TaskArtifactUpdateEvent],
    Field(discriminator="type"),
]


# ===== PUSH NOTIFICATIONS =====

class AuthenticationInfo(BaseModel):
    """Authentication details for a push notification endpoint."""
    schemes: List[str]
    credentials: Optional[str] = None


class PushNotificationConfig(BaseModel):
    """Where and how task updates would be pushed."""
    url: str
    token: Optional[str] = None
    authentication: Optional[AuthenticationInfo] = None


class TaskPushNotificationConfig(BaseModel):
    """Associates a push notification configuration with a task."""
    id: str
    pushNotificationConfig: Optional[PushNotificationConfig] = None
    metadata: Optional[Dict[str, Any]] = None


# ===== REQUEST PARAMETERS =====

class TaskIdParams(BaseModel):
    """Parameters containing a task ID for simple task operations."""
    id: str
    metadata: Optional[Dict[str, Any]] = None


class TaskQueryParams(TaskIdParams):
    """Parameters for querying a task with optional history length."""
    historyLength: Optional[int] = Field(None, ge=0)


class TaskSendParams(BaseModel):
    """Parameters for tasks/send and tasks/sendSubscribe."""
    id: str = Field(default_factory=lambda: create_task_id())
    sessionId: Optional[str] = None
    message: Message
    pushNotification: Optional[PushNotificationConfig] = None
    historyLength: Optional[int] = Field(None, ge=0)
    metadata: Optional[Dict[str, Any]] = None


# ===== JSON-RPC 2.0 TYPES =====

class JSONRPCMessage(BaseModel):
    """Base structure for any JSON-RPC 2.0 request or response."""
    jsonrpc: Literal["2.0"] = "2.0"
    id: Optional[Union[int, str]] = None


class JSONRPCRequest(JSONRPCMessage):
    """Represents a JSON-RPC 2.0 Request object."""
    method: str
    params: Optional[Dict[str, Any]] = None


class JSONRPCError(BaseModel):
    """Represents a JSON-RPC 2.0 Error object."""
    code: int
    message: str
    data: Optional[Any] = None


# ===== ERROR TAXONOMY =====

class JSONParseError(JSONRPCError):
    code: int = -32700
    message: str = "Invalid JSON payload"


class InvalidRequestError(JSONRPCError):
    code: int = -32600
    message: str = "Request payload validation error"


class MethodNotFoundError(JSONRPCError):
    code: int = -32601
    message: str = "Method not found"


class InvalidParamsError(JSONRPCError):
    code: int = -32602
    message: str = "Invalid parameters"


class InternalError(JSONRPCError):
    code: int = -32603
    message: str = "Internal error"


class TaskNotFoundError(JSONRPCError):
    """The requested task ID was not found."""
    code: int = -32001
    message: str = "Task not found"


class TaskNotCancelableError(JSONRPCError):
    """The task is in a state where it cannot be canceled."""
    code: int = -32002
    message: str = "Task cannot be canceled"


class PushNotificationNotSupportedError(JSONRPCError):
    code: int = -32003
    message: str = "Push Notification is not supported"


class OperationNotSupportedError(JSONRPCError):
    code: int = -32004
    message: str = "This operation is not supported"


class ContentTypeNotSupportedError(JSONRPCError):
    code: int = -32005
    message: str = "Incompatible content types"


class StreamingNotSupportedError(JSONRPCError):
    code: int = -32006
    message: str = "Streaming is not supported"


class AuthenticationRequiredError(JSONRPCError):
    code: int = -32007
    message: str = "Authentication required"


class AuthorizationFailedError(JSONRPCError):
    code: int = -32008
    message: str = "Authorization failed"


class InvalidTaskStateError(JSONRPCError):
    """The operation is not valid for the task's current state."""
    code: int = -32009
    message: str = "Invalid task state for operation"


class RateLimitExceededError(JSONRPCError):
    code: int = -32010
    message: str = "Rate limit exceeded"


class ResourceUnavailableError(JSONRPCError):
    code: int = -32011
    message: str = "Resource unavailable"


_ERRORS_BY_CODE: Dict[int, Type[JSONRPCError]] = {
    cls.model_fields["code"].default: cls
    for cls in (
        JSONParseError,
        InvalidRequestError,
        MethodNotFoundError,
        InvalidParamsError,
        InternalError,
        TaskNotFoundError,
        TaskNotCancelableError,
        PushNotificationNotSupportedError,
        OperationNotSupportedError,
        ContentTypeNotSupportedError,
        StreamingNotSupportedError,
        AuthenticationRequiredError,
        AuthorizationFailedError,
        InvalidTaskStateError,
        RateLimitExceededError,
        ResourceUnavailableError,
    )
}


def error_for_code(code: int) -> Type[JSONRPCError]:
    """Return the error class registered for a JSON-RPC code, or the base class."""
    return _ERRORS_BY_CODE.get(code, JSONRPCError)


# ===== RESPONSE ENVELOPES =====

class JSONRPCResponse(JSONRPCMessage):
    """A JSON-RPC 2.0 response carrying either a result or an error."""
    result: Optional[Any] = None
    error: Optional[JSONRPCError] = None

    @field_validator("error")
    def narrow_error(cls, v):
        if v is None or type(v) is not JSONRPCError:
            return v
        return error_for_code(v.code).model_validate(v.model_dump())


class SendTaskResponse(JSONRPCResponse):
    result: Optional[Union[Task, Message]] = None


class SendTaskStreamingResponse(JSONRPCResponse):
    result: Optional[TaskStreamEvent] = None


class GetTaskResponse(JSONRPCResponse):
    result: Optional[Task] = None


class CancelTaskResponse(JSONRPCResponse):
    result: Optional[Task] = None


class SetTaskPushNotificationResponse(JSONRPCResponse):
    result: Optional[TaskPushNotificationConfig] = None


class GetTaskPushNotificationResponse(JSONRPCResponse):
    result: Optional[TaskPushNotificationConfig] = None


# ===== UTILITY FUNCTIONS =====

def serialize_a2a(obj: Any) -> Any:
    """Convert models (and nested structures) into JSON-ready values without nulls."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_none=True)
    if isinstance(obj, list):
        return [serialize_a2a(item) for item in obj]
    if isinstance(obj, dict):
        return {key: serialize_a2a(value) for key, value in obj.items() if value is not None}
    return obj


def success_response(request_id: Any, result: Any) -> Dict[str, Any]:
    """Build a JSON-RPC success envelope."""
    return {"jsonrpc": "2.0", "id": request_id, "result": serialize_a2a(result)}


def error_response(request_id: Any, error: JSONRPCError) -> Dict[str, Any]:
    """Build a JSON-RPC error envelope."""
    return {"jsonrpc": "2.0", "id": request_id, "error": serialize_a2a(error)}


def generate_id(prefix: str = "") -> str:
    """Generate a unique ID for A2A entities."""
    return f"{prefix}{uuid4()}" if prefix else str(uuid4())


def create_task_id() -> str:
    """Generate a unique task ID."""
    return generate_id("task_")


def current_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()
