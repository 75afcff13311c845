"""
VendorGate — Workflow Schema

The review engine's job inputs and outputs are described by a declarative
workflow document, not compiled in. This module parses that document into
WorkflowVariable / WorkflowSchema values.

Variable shapes (tagged union):
  Primitive  — string, float, bool, date (and any unrecognised type name)
  FileRef    — file, or array_of_files when many=True
  ObjectOf   — object with named field variables
  ArrayOf    — array with one element variable
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlparse

from vendorgate.errors import SchemaInvalidError, SchemaNotFoundError

logger = logging.getLogger(__name__)

# ============================================================
# TYPES
# ============================================================
TYPE_ALIASES = {"str": "string", "array_files": "array_of_files"}
PRIMITIVE_TYPES = ("string", "float", "bool", "date")


@dataclass(frozen=True)
class Primitive:
    kind: str


@dataclass(frozen=True)
class FileRef:
    many: bool = False


@dataclass(frozen=True)
class ObjectOf:
    fields: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ArrayOf:
    element: Optional["WorkflowVariable"] = None


VariableShape = Union[Primitive, FileRef, ObjectOf, ArrayOf]


@dataclass(frozen=True)
class WorkflowVariable:
    name: str
    type: str
    shape: VariableShape
    display_name: str = ""
    nullable: bool = False
    sample_value: Any = None
    description: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def kind(self) -> str:
        return TYPE_ALIASES.get(self.type, self.type)

    def to_dict(self) -> dict:
        out = {"variable_name": self.name, "display_name": self.label,
               "type": self.type, "is_nullable": self.nullable}
        if self.description:
            out["description"] = self.description
        if self.sample_value is not None:
            out["value"] = self.sample_value
        if isinstance(self.shape, ObjectOf) and self.shape.fields:
            out["type_definition"] = {k: v.to_dict() for k, v in self.shape.fields.items()}
        elif isinstance(self.shape, ArrayOf) and self.shape.element is not None:
            out["type_definition"] = self.shape.element.to_dict()
        return out


@dataclass(frozen=True)
class WorkflowSchema:
    job_input_schema: dict
    job_result_schema: dict
    workflow_id: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "workflowId": self.workflow_id,
            "name": self.name,
            "jobPayloadSchema": {k: v.to_dict() for k, v in self.job_input_schema.items()},
            "jobResultsPayloadSchema": {k: v.to_dict() for k, v in self.job_result_schema.items()},
        }


# ============================================================
# PARSING
# ============================================================
def _looks_like_variable(raw) -> bool:
    return isinstance(raw, dict) and isinstance(raw.get("type"), str)


def _shape_for(declared: str, type_definition) -> VariableShape:
    kind = TYPE_ALIASES.get(declared, declared)
    if kind == "file":
        return FileRef()
    if kind == "array_of_files":
        return FileRef(many=True)
    if kind == "object":
        fields = {}
        if isinstance(type_definition, dict) and not _looks_like_variable(type_definition):
            for key, nested in type_definition.items():
                if _looks_like_variable(nested):
                    fields[key] = parse_variable(key, nested)
        return ObjectOf(fields)
    if kind == "array":
        if _looks_like_variable(type_definition):
            return ArrayOf(parse_variable("item", type_definition))
        if isinstance(type_definition, str):
            return ArrayOf(parse_variable("item", {"type": type_definition}))
        return ArrayOf()
    if kind not in PRIMITIVE_TYPES:
        logger.warning("[Workflow] Unknown variable type %r, treating as primitive", declared)
    return Primitive(kind)


def parse_variable(key: str, raw: dict) -> WorkflowVariable:
    declared = raw.get("type") or "string"
    return WorkflowVariable(
        name=raw.get("variable_name") or key,
        type=declared,
        shape=_shape_for(declared, raw.get("type_definition")),
        display_name=raw.get("display_name") or "",
        nullable=bool(raw.get("is_nullable", False)),
        sample_value=raw.get("value"),
        description=raw.get("display_description") or raw.get("description") or "",
    )


def _parse_variables(raw) -> dict:
    if not isinstance(raw, dict):
        return {}
    return {k: parse_variable(k, v) for k, v in raw.items() if _looks_like_variable(v)}


def parse_schema(document) -> WorkflowSchema:
    """Turn a decoded workflow document into a WorkflowSchema."""
    if not isinstance(document, dict):
        raise SchemaInvalidError("Invalid workflow schema file: expected a JSON object")
    inputs = document.get("jobPayloadSchema", document.get("jobInputSchema"))
    results = document.get("jobResultsPayloadSchema", document.get("jobResultSchema"))
    workflow_id = document.get("workflowId")
    name = document.get("name")
    return WorkflowSchema(
        job_input_schema=_parse_variables(inputs),
        job_result_schema=_parse_variables(results),
        workflow_id=workflow_id if isinstance(workflow_id, str) and workflow_id else None,
        name=name if isinstance(name, str) else None,
    )


# ============================================================
# LOADER
# ============================================================
class WorkflowSchemaLoader:
    """Reads the first workflow document found among the candidate paths.
    Loaded fresh on every call; deployments may swap the document."""

    def __init__(self, candidates):
        self.candidates = [Path(c) for c in candidates]

    def load(self) -> WorkflowSchema:
        for path in self.candidates:
            if not path.is_file():
                continue
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
            except (ValueError, OSError) as e:
                raise SchemaInvalidError(f"Invalid workflow schema file {path.name}: {e}")
            schema = parse_schema(document)
            logger.debug("[Workflow] Loaded %s (%d inputs, %d results)", path,
                         len(schema.job_input_schema), len(schema.job_result_schema))
            return schema
        expected = " or ".join(str(p) for p in self.candidates)
        raise SchemaNotFoundError(f"Workflow schema not found. Expected {expected}")


def load_workflow_schema(settings) -> WorkflowSchema:
    return WorkflowSchemaLoader(settings.schema_paths).load()


# ============================================================
# DEMO SAMPLES
# ============================================================
MIME_BY_EXT = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".csv": "text/csv",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".txt": "text/plain",
    ".json": "application/json",
    ".html": "text/html",
    ".xml": "application/xml",
}


def mime_from_filename(filename: str) -> str:
    return MIME_BY_EXT.get(Path(filename).suffix.lower(), "application/octet-stream")


def _filename_from_url(url: str, input_key: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return name or f"{input_key}.dat"


def sample_from_variable(variable: WorkflowVariable):
    """Sample value for a variable: its own literal if usable, else one
    synthesised from the type definition, else None."""
    value = variable.sample_value
    shape = variable.shape
    if value is not None:
        if isinstance(shape, ArrayOf):
            if isinstance(value, list) and value:
                return value
        elif isinstance(shape, ObjectOf):
            if isinstance(value, dict) and value:
                return value
        else:
            return value

    if isinstance(shape, ArrayOf) and shape.element is not None:
        return [sample_from_variable(shape.element)]
    if isinstance(shape, ObjectOf) and shape.fields:
        return {k: sample_from_variable(v) for k, v in shape.fields.items()}
    return value


def extract_demo_inputs(schema: WorkflowSchema) -> dict:
    """Sample contact data and http(s) sample documents from the input schema."""
    contact = {}
    for variable in schema.job_input_schema.values():
        if isinstance(variable.shape, ObjectOf) and isinstance(variable.sample_value, dict) \
                and variable.sample_value:
            contact = variable.sample_value
            break

    documents = []
    for key, variable in schema.job_input_schema.items():
        if not isinstance(variable.shape, FileRef):
            continue
        url = variable.sample_value
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            continue
        filename = _filename_from_url(url, key)
        documents.append({"inputKey": key, "url": url, "filename": filename,
                          "mimeType": mime_from_filename(filename)})
    return {"contactJson": contact, "documents": documents}


def extract_demo_results(schema: WorkflowSchema) -> dict:
    return {k: sample_from_variable(v) for k, v in schema.job_result_schema.items()}
