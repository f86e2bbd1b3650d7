from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PublishOperation(Enum):
    CREATE = "create"
    UPDATE = "update"

    @property
    def display_name(self) -> str:
        return "Create Page" if self is PublishOperation.CREATE else "Update Page"

    @property
    def verb(self) -> str:
        return "created" if self is PublishOperation.CREATE else "updated"


class PublishState(Enum):
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    WRITING = "writing"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PublishResult:
    """게시 워크플로우의 최종 결과 (생성 후 변경 불가)"""
    success: bool
    operation: PublishOperation
    published_at: datetime = field(default_factory=datetime.now)
    page_url: str | None = None
    page_id: str | None = None
    error_message: str | None = None
    title: str | None = None

    @classmethod
    def succeeded(
        cls,
        operation: PublishOperation,
        page_url: str,
        page_id: str,
        title: str | None = None,
    ) -> "PublishResult":
        return cls(
            success=True,
            operation=operation,
            page_url=page_url,
            page_id=page_id,
            title=title,
        )

    @classmethod
    def failure(cls, operation: PublishOperation, error_message: str) -> "PublishResult":
        return cls(success=False, operation=operation, error_message=error_message)

    @property
    def status_message(self) -> str:
        if self.success:
            return f"Page successfully {self.operation.verb}"
        return self.error_message or "Unknown error"

    @property
    def detailed_message(self) -> str:
        if self.success:
            if self.title:
                return f'Page "{self.title}" successfully {self.operation.verb} at {self.page_url}'
            return f"Page successfully {self.operation.verb} at {self.page_url}"
        return f"Failed to {self.operation.value} page: {self.error_message or 'Unknown error'}"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "operation": self.operation.value,
            "publishedAt": self.published_at.isoformat(),
            "pageUrl": self.page_url,
            "pageId": self.page_id,
            "errorMessage": self.error_message,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PublishResult":
        return cls(
            success=data["success"],
            operation=PublishOperation(data["operation"]),
            published_at=datetime.fromisoformat(data["publishedAt"]),
            page_url=data.get("pageUrl"),
            page_id=data.get("pageId"),
            error_message=data.get("errorMessage"),
            title=data.get("title"),
        )


@dataclass(frozen=True)
class PublishProgress:
    """게시 단계별 진행 이벤트. progress는 한 실행 안에서 감소하지 않습니다."""
    step: str
    message: str
    progress: float
    is_complete: bool = False
    error_message: str | None = None

    def __post_init__(self):
        if not 0.0 <= self.progress <= 1.0:
            raise ValueError(f"progress는 0~1 범위여야 합니다: {self.progress}")

    @classmethod
    def for_step(cls, step: str, message: str, progress: float) -> "PublishProgress":
        return cls(step=step, message=message, progress=progress)

    @classmethod
    def complete(cls, step: str, message: str) -> "PublishProgress":
        return cls(step=step, message=message, progress=1.0, is_complete=True)

    @classmethod
    def error(cls, step: str, message: str, error_message: str, progress: float) -> "PublishProgress":
        # 직전 진행률을 유지해 단조 증가를 깨지 않음
        return cls(
            step=step,
            message=message,
            progress=progress,
            is_complete=True,
            error_message=error_message,
        )

    @property
    def is_error(self) -> bool:
        return self.error_message is not None

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "message": self.message,
            "progress": self.progress,
            "isComplete": self.is_complete,
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PublishProgress":
        return cls(
            step=data["step"],
            message=data["message"],
            progress=float(data["progress"]),
            is_complete=data.get("isComplete", False),
            error_message=data.get("errorMessage"),
        )
