"""Plugin definition models.

JSON documents use camelCase keys (``targetDomains``, ``textContent``,
``innerHTML``); the models expose snake_case attributes and accept either
spelling on input. Dump with ``by_alias=True`` to get the wire shape back.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pagemod.match_pattern import is_valid_target_pattern

SEMVER = re.compile(r"^\d+\.\d+\.\d+$")

InsertPosition = Literal["beforebegin", "afterbegin", "beforeend", "afterend"]
EventType = Literal[
    "click",
    "dblclick",
    "mouseenter",
    "mouseleave",
    "focus",
    "blur",
    "change",
    "input",
    "submit",
    "keydown",
    "keyup",
]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Condition(_Model):
    type: Literal["exists", "notExists", "matches", "custom"]
    selector: str | None = None
    pattern: str | None = None
    code: str | None = None


class Event(_Model):
    type: EventType
    code: str
    condition: Condition | None = None


class Element(_Model):
    tag: str = Field(min_length=1)
    attributes: dict[str, str] | None = None
    style: dict[str, str] | None = None
    text_content: str | None = Field(default=None, alias="textContent")
    inner_html: str | None = Field(default=None, alias="innerHTML")
    children: list[Element] | None = None
    events: list[Event] | None = None


# ---------------------------------------------------------------------------
# Operations: tagged union on ``type``
# ---------------------------------------------------------------------------


class InsertParams(_Model):
    selector: str = Field(min_length=1)
    position: InsertPosition
    element: Element


class UpdateParams(_Model):
    selector: str = Field(min_length=1)
    style: dict[str, str] | None = None
    attributes: dict[str, str] | None = None
    text_content: str | None = Field(default=None, alias="textContent")


class DeleteParams(_Model):
    selector: str = Field(min_length=1)


class ExecuteParams(_Model):
    code: str = Field(min_length=1)
    run: Literal["once", "always"] = "once"


class _OperationBase(_Model):
    id: str = Field(min_length=1)
    description: str = ""
    condition: Condition | None = None


class InsertOperation(_OperationBase):
    type: Literal["insert"] = "insert"
    params: InsertParams


class UpdateOperation(_OperationBase):
    type: Literal["update"] = "update"
    params: UpdateParams


class DeleteOperation(_OperationBase):
    type: Literal["delete"] = "delete"
    params: DeleteParams


class ExecuteOperation(_OperationBase):
    type: Literal["execute"] = "execute"
    params: ExecuteParams


Operation = Annotated[
    InsertOperation | UpdateOperation | DeleteOperation | ExecuteOperation,
    Field(discriminator="type"),
]

SELECTOR_OPERATIONS = (InsertOperation, UpdateOperation, DeleteOperation)


class Plugin(_Model):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: str
    description: str | None = None
    target_domains: list[str] = Field(alias="targetDomains", min_length=1)
    enabled: bool = True
    operations: list[Operation] = Field(min_length=1)

    @field_validator("version")
    @classmethod
    def _semver(cls, v: str) -> str:
        if not SEMVER.match(v):
            raise ValueError("version must be semver (e.g. 1.0.0)")
        return v

    @field_validator("target_domains")
    @classmethod
    def _valid_targets(cls, v: list[str]) -> list[str]:
        bad = [d for d in v if not is_valid_target_pattern(d)]
        if bad:
            raise ValueError(f"invalid domain pattern(s): {', '.join(bad)}")
        return v

    @model_validator(mode="after")
    def _unique_operation_ids(self) -> Plugin:
        seen: set[str] = set()
        for op in self.operations:
            if op.id in seen:
                raise ValueError(f"duplicate operation id: {op.id}")
            seen.add(op.id)
        return self
