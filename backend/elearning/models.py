"""Entity models shared by the resolver, migration and catalog layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Number = Union[int, float]
Timestamp = Union[int, float, str]


class UserRole(str, Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


class Document(BaseModel):
    """Base for stored records: camelCase on the wire, unknown fields preserved."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GenericRecord(Document):
    id: Optional[str] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None


class User(Document):
    id: str
    role: Optional[UserRole] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Resource(Document):
    id: str
    title: str
    type: str = "document"
    description: str = ""
    url: Optional[str] = None
    duration: Optional[Number] = None
    order: Number = 0


class Evaluation(Document):
    id: str
    title: str
    type: str = "quiz"
    description: str = ""
    questions: List[Any] = Field(default_factory=list)
    max_score: Optional[Number] = None
    order: Number = 0


class Module(Document):
    id: str
    course_id: Optional[str] = None
    title: str
    description: str = ""
    order: Number = 0
    status: str = "active"
    duration: Optional[Number] = None
    resources: List[Resource] = Field(default_factory=list)
    evaluations: List[Evaluation] = Field(default_factory=list)
    # Left unset when absent: None (not attempted) is distinct from 0.
    score: Optional[Number] = None
    progress: Optional[Number] = None
    completed: Optional[bool] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

    def to_document(self) -> Dict[str, Any]:
        payload = super().to_document()
        payload["resources"] = {resource.id: resource.to_document() for resource in self.resources}
        payload["evaluations"] = {evaluation.id: evaluation.to_document() for evaluation in self.evaluations}
        return payload


class Course(Document):
    id: str
    title: str
    description: str = ""
    instructor_id: Optional[str] = None
    specialty_id: Optional[str] = None
    discipline_id: Optional[str] = None
    status: str = "active"
    modules: List[Module] = Field(default_factory=list)
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

    def to_document(self) -> Dict[str, Any]:
        payload = super().to_document()
        payload["modules"] = {module.id: module.to_document() for module in self.modules}
        return payload


class Enrollment(Document):
    user_id: str
    course_id: str
    enrolled_at: Optional[Timestamp] = None
    status: str = "active"
    progress: Number = 0

    @property
    def id(self) -> str:
        return f"{self.user_id}_{self.course_id}"


class ModuleProgress(Document):
    module_id: str
    completed: bool = False
    status: Optional[str] = None
    score: Optional[Number] = None
    progress: Optional[Number] = None
    last_updated: Optional[Timestamp] = None


class ProgressRecord(Document):
    """Per-user course progress with module entries held in an explicit map."""

    user_id: str
    course_id: str
    progress: Number = 0
    completed: bool = False
    score: Optional[Number] = None
    start_date: Optional[Timestamp] = None
    last_updated: Optional[Timestamp] = None
    details: Optional[Dict[str, Any]] = None
    modules: Dict[str, ModuleProgress] = Field(default_factory=dict)


class CourseStats(BaseModel):
    score: int = 0
    progress: int = 0
    completed: bool = False
    total_modules: int = 0
    completed_modules: int = 0
    module_scores: Dict[str, Number] = Field(default_factory=dict)


class OverallProgress(BaseModel):
    enrolled_courses: int = 0
    completed_courses: int = 0
    overall_progress: int = 0


@dataclass
class ResolveResult:
    """Outcome of a single-entity lookup. ``found`` is False for absent entities."""

    data: Optional[Document] = None
    provenance: List[str] = field(default_factory=list)
    found: bool = False
    source: str = "none"

    @classmethod
    def missing(cls) -> "ResolveResult":
        return cls()


@dataclass
class CollectionResult:
    items: List[Document] = field(default_factory=list)
    provenance: Dict[str, List[str]] = field(default_factory=dict)

    def ids(self) -> List[str]:
        return [str(getattr(item, "id", "")) for item in self.items]


__all__ = [
    "CollectionResult",
    "Course",
    "CourseStats",
    "Document",
    "Enrollment",
    "Evaluation",
    "GenericRecord",
    "Module",
    "ModuleProgress",
    "OverallProgress",
    "ProgressRecord",
    "Resource",
    "ResolveResult",
    "User",
    "UserRole",
]
