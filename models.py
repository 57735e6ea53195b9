# models.py
from dataclasses import dataclass, field, asdict
from typing import Any, List, Optional


class Category:
    ON_PAGE = "On-Page"
    TECHNICAL = "Technical"
    SCHEMA = "Schema"
    OTHER = "Other"


@dataclass
class ExtractedFields:
    title: Optional[str] = None
    meta_description: Optional[str] = None
    h1: Optional[str] = None
    canonical: Optional[str] = None
    meta_robots: Optional[str] = None
    json_ld: Any = None
    # extraction diagnostics, never hashed or stored with the snapshot
    parse_errors: List[str] = field(default_factory=list, compare=False, repr=False)

    def to_dict(self):
        return {
            "title": self.title,
            "meta_description": self.meta_description,
            "h1": self.h1,
            "canonical": self.canonical,
            "meta_robots": self.meta_robots,
            "json_ld": self.json_ld,
        }

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            title=data.get("title"),
            meta_description=data.get("meta_description"),
            h1=data.get("h1"),
            canonical=data.get("canonical"),
            meta_robots=data.get("meta_robots"),
            json_ld=data.get("json_ld"),
        )


@dataclass
class ChangeRecord:
    field: str
    old: Optional[str]
    new: Optional[str]
    category: str = Category.OTHER

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(data["field"], data.get("old"), data.get("new"), data.get("category", Category.OTHER))


@dataclass
class CheckResult:
    changed: bool = False
    error: Optional[str] = None
    url: Optional[str] = None
    changes: Optional[List[ChangeRecord]] = None
    hash_collision: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self):
        out = {"changed": self.changed}
        if self.error is not None:
            out["error"] = self.error
        if self.url is not None:
            out["url"] = self.url
        if self.changes is not None:
            out["changes"] = [c.to_dict() for c in self.changes]
        if self.hash_collision:
            out["hash_collision"] = True
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out
