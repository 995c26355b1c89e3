#!/usr/bin/env python3
"""
Build a draft-07 JSON Schema from one or more example JSON documents.

Usage:
  jssb data.json                      # writes data.schema.json next to data.json
  jssb data.json -o schema.json -t "My Schema" --no-examples
  jssb data.json --infer-enums --enum-threshold 3
  jssb a.json b.json -o merged.schema.json
  cat data.json | jssb                # prints schema to stdout
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)

SCHEMA_DRAFT = "http://json-schema.org/draft-07/schema#"

SCHEMA_PROPERTY_ORDER = (
    "$schema",
    "title",
    "description",
    "type",
    "const",
    "enum",
    "properties",
    "items",
    "required",
    "additionalProperties",
    "nullable",
    "minimum",
    "maximum",
    "minLength",
    "maxLength",
    "minItems",
    "maxItems",
    "uniqueItems",
    "pattern",
    "format",
    "default",
    "examples",
)

EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
URI_RE = re.compile(r"https?://.+")
DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
DATE_TIME_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?(Z|[+-]\d{2}:\d{2})?", re.ASCII
)
UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)
IPV4_RE = re.compile(r"(\d{1,3}\.){3}\d{1,3}", re.ASCII)
IPV6_RE = re.compile(r"([0-9a-fA-F]{0,4}:){7}[0-9a-fA-F]{0,4}")

# Array indices; the enum pass pools values across elements of every array level.
ELEMENT_INDEX_RE = re.compile(r"\[\d+\]")

# Integral bounds inside this range are written as ints.
MAX_EXACT_FLOAT_INT = 2 ** 53


class InvalidArgumentError(ValueError):
    """Raised when an entry point is called with arguments it cannot work with."""


class _Undefined:
    def __repr__(self) -> str:
        return "UNDEFINED"


# Stands in for a value that is absent rather than null; inferred as an empty schema.
UNDEFINED = _Undefined()


def json_type(value: Any) -> str:
    if value is None or value is UNDEFINED:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "integer" if value.is_integer() else "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise TypeError(f"Unsupported JSON value of type {type(value).__name__}")


def _is_ipv4(value: str) -> bool:
    if not IPV4_RE.fullmatch(value):
        return False
    return all(0 <= int(octet) <= 255 for octet in value.split("."))


FORMAT_RULES: List[Tuple[str, Callable[[str], Any]]] = [
    ("email", EMAIL_RE.fullmatch),
    ("uri", URI_RE.match),
    ("date", DATE_RE.fullmatch),
    ("date-time", DATE_TIME_RE.fullmatch),
    ("uuid", UUID_RE.fullmatch),
    ("ipv4", _is_ipv4),
    ("ipv6", IPV6_RE.fullmatch),
]


def detect_format(value: str) -> Optional[str]:
    """Return the first format tag whose rule accepts ``value``, or None."""
    for tag, matches in FORMAT_RULES:
        if matches(value):
            return tag
    return None


def string_bounds(value: str) -> Dict[str, int]:
    return {"minLength": 0, "maxLength": max(len(value) * 2, 100)}


def _integral(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) <= MAX_EXACT_FLOAT_INT:
        return int(value)
    return value


def number_bounds(value: float) -> Dict[str, float]:
    # An envelope of +/-50% around the one observed value, not a domain bound.
    if isinstance(value, int):
        half, odd = divmod(abs(value), 2)
        if not odd:
            return {"minimum": value - half, "maximum": value + half}
        try:
            spread = abs(value) / 2
            return {"minimum": value - spread, "maximum": value + spread}
        except OverflowError:
            # Beyond float range; widen to the enclosing integers.
            return {"minimum": value - half - 1, "maximum": value + half + 1}
    spread = abs(value * 0.5)
    return {"minimum": _integral(value - spread), "maximum": _integral(value + spread)}


def _value_key(value: Any) -> Tuple[bool, Any]:
    # Keeps True and 1 apart while 1 and 1.0 stay equal.
    return isinstance(value, bool), value


class EnumTable:
    """
    Per-path value frequencies gathered from an array sample.

    Paths use the collector's form: ``.key`` for a field of an array element,
    ``[i]`` for an array nested directly in an array. Lookups ignore indices,
    so values are pooled across the elements of every array level.
    """

    def __init__(self) -> None:
        self._paths: Dict[str, Dict[Tuple[bool, Any], List[Any]]] = {}

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, path: str) -> bool:
        return path in self._paths

    def collect(self, array: List[Any], parent_path: str = "") -> None:
        for index, item in enumerate(array):
            if isinstance(item, list):
                self.collect(item, f"{parent_path}[{index}]")
            elif isinstance(item, dict):
                for key, value in item.items():
                    path = f"{parent_path}.{key}"
                    if isinstance(value, list):
                        self.collect(value, path)
                    elif not isinstance(value, dict):
                        self.record(path, value)

    def record(self, path: str, value: Any) -> None:
        entry = self._paths.setdefault(path, {}).setdefault(_value_key(value), [value, 0])
        entry[1] += 1

    def counts(self, path: str) -> List[Tuple[Any, int]]:
        return [(value, count) for value, count in self._paths.get(path, {}).values()]

    def candidates(self, path: str, threshold: int) -> Optional[List[Any]]:
        """
        Distinct values seen at the inference path ``path``, in first-seen order,
        or None when nothing was seen there or there are more than ``threshold``.
        """
        key = ELEMENT_INDEX_RE.sub("", path)
        pooled: Dict[Tuple[bool, Any], Any] = {}
        found = False
        for collected_path, values in self._paths.items():
            if ELEMENT_INDEX_RE.sub("", collected_path) != key:
                continue
            found = True
            for value_key, (value, _) in values.items():
                pooled.setdefault(value_key, value)
        if not found or len(pooled) > threshold:
            return None
        return list(pooled.values())


def reorder_schema_properties(schema: Any) -> Any:
    if not isinstance(schema, dict):
        return schema

    ordered: Dict[str, Any] = {}
    for key in SCHEMA_PROPERTY_ORDER:
        if key not in schema:
            continue
        value = schema[key]
        if key == "properties" and isinstance(value, dict):
            ordered[key] = {
                name: reorder_schema_properties(prop) for name, prop in value.items()
            }
        elif key == "items" and isinstance(value, list):
            ordered[key] = [reorder_schema_properties(item) for item in value]
        elif key == "items":
            ordered[key] = reorder_schema_properties(value)
        else:
            ordered[key] = value

    for key, value in schema.items():
        if key not in ordered:
            ordered[key] = value
    return ordered


class JsonSchemaBuilder:
    def __init__(
        self,
        *,
        include_examples: bool = True,
        detect_format: bool = True,
        required_by_default: bool = True,
        additional_properties: bool = False,
        infer_enums: bool = False,
        enum_threshold: int = 5,
    ) -> None:
        self._options = {
            "include_examples": include_examples,
            "detect_format": detect_format,
            "required_by_default": required_by_default,
            "additional_properties": additional_properties,
            "infer_enums": infer_enums,
            "enum_threshold": enum_threshold,
        }

    @property
    def options(self) -> Dict[str, Any]:
        return dict(self._options)

    def build(self, sample: Any, title: Optional[str] = None) -> Dict[str, Any]:
        schema = self.infer(sample, "", self._collect_enums(sample))
        return self._finish(schema, title)

    def build_from_multiple_samples(
        self, samples: Sequence[Any], title: Optional[str] = None
    ) -> Dict[str, Any]:
        samples = list(samples)
        if not samples:
            raise InvalidArgumentError("At least one sample is required")
        if len(samples) == 1:
            return self.build(samples[0], title)

        schemas = [self.infer(sample, "", self._collect_enums(sample)) for sample in samples]
        logger.debug("Merging schemas of %d samples", len(schemas))
        merged = self.merge_schemas(schemas)
        if self._options["include_examples"]:
            merged["examples"] = samples
        return self._finish(merged, title)

    def _finish(self, schema: Dict[str, Any], title: Optional[str]) -> Dict[str, Any]:
        if title:
            schema["title"] = title
        schema["$schema"] = SCHEMA_DRAFT
        return reorder_schema_properties(schema)

    def _collect_enums(self, sample: Any) -> Optional[EnumTable]:
        if not self._options["infer_enums"]:
            return None
        table = EnumTable()
        if isinstance(sample, list):
            table.collect(sample)
            logger.debug("Collected enum candidates for %d paths", len(table))
        return table

    def infer(
        self, value: Any, path: str = "", enum_table: Optional[EnumTable] = None
    ) -> Dict[str, Any]:
        if value is UNDEFINED:
            return {}
        if value is None:
            return {"type": "null"}

        t = json_type(value)
        schema: Dict[str, Any] = {"type": t}
        if self._options["include_examples"]:
            schema["examples"] = [value]

        if t == "string":
            schema.update(string_bounds(value))
            if self._options["detect_format"]:
                fmt = detect_format(value)
                if fmt:
                    schema["format"] = fmt
        elif t in ("integer", "number"):
            schema.update(number_bounds(value))
        elif t == "array":
            self._infer_array(schema, value, path, enum_table)
        elif t == "object":
            self._infer_object(schema, value, path, enum_table)

        if enum_table is not None and path:
            values = enum_table.candidates(path, self._options["enum_threshold"])
            if values is not None:
                schema["enum"] = values
                schema.pop("examples", None)

        return schema

    def _infer_array(
        self,
        schema: Dict[str, Any],
        array: List[Any],
        path: str,
        enum_table: Optional[EnumTable],
    ) -> None:
        schema["minItems"] = 0
        schema["maxItems"] = max(len(array) * 2, 100)

        if not array:
            schema["items"] = {}
            return

        # One representative per observed type, in first-seen order.
        seen_types: List[str] = []
        item_schemas: List[Dict[str, Any]] = []
        for index, item in enumerate(array):
            item_type = json_type(item)
            if item_type not in seen_types:
                seen_types.append(item_type)
                item_schemas.append(self.infer(item, f"{path}[{index}]", enum_table))

        schema["items"] = self.merge_schemas(item_schemas)

        if seen_types == ["string"] and len(set(array)) == len(array):
            schema["uniqueItems"] = True

    def _infer_object(
        self,
        schema: Dict[str, Any],
        obj: Dict[str, Any],
        path: str,
        enum_table: Optional[EnumTable],
    ) -> None:
        required_by_default = self._options["required_by_default"]
        properties: Dict[str, Any] = {}
        required: List[str] = []

        for key, value in obj.items():
            prop_path = f"{path}.{key}" if path else key
            properties[key] = self.infer(value, prop_path, enum_table)
            required.append(key)

        schema["properties"] = properties
        if required_by_default:
            schema["required"] = required
        schema["additionalProperties"] = self._options["additional_properties"]

    def merge_schemas(self, schemas: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Merge schemas of the same entity into one covering every observed shape.

        Only structure is merged: the union of types, object properties merged
        key by key, and the items of the first array schema. Bounds, formats,
        enums and examples are dropped.
        """
        if not schemas:
            return {}
        if len(schemas) == 1:
            return schemas[0]

        merged: Dict[str, Any] = {}

        types = _merge_types(schema.get("type") for schema in schemas)
        if len(types) == 1:
            merged["type"] = types[0]
        elif types:
            merged["type"] = types

        object_schemas = [schema for schema in schemas if schema.get("type") == "object"]
        if object_schemas:
            keys: List[str] = []
            for schema in object_schemas:
                for key in schema.get("properties", {}):
                    if key not in keys:
                        keys.append(key)

            properties: Dict[str, Any] = {}
            for key in keys:
                prop_schemas = [
                    schema["properties"][key]
                    for schema in object_schemas
                    if key in schema.get("properties", {})
                ]
                properties[key] = self.merge_schemas(prop_schemas)
            merged["properties"] = properties
            merged["additionalProperties"] = self._options["additional_properties"]

        # Only the first array's items are kept; item schemas are not unified across arrays.
        for schema in schemas:
            if schema.get("type") == "array" and "items" in schema:
                merged["items"] = schema["items"]
                break

        return merged


def _merge_types(type_values: Iterable[Any]) -> List[str]:
    types: List[str] = []
    for value in type_values:
        for t in value if isinstance(value, list) else [value]:
            if t and t not in types:
                types.append(t)
    return types


def default_output_path(input_path: str) -> str:
    directory, filename = os.path.split(input_path)
    stem = os.path.splitext(filename)[0]
    return os.path.join(directory, f"{stem}.schema.json")


def default_title(input_path: str) -> str:
    stem = os.path.splitext(os.path.basename(input_path))[0]
    return stem[:1].upper() + stem[1:]


def load_input_json(parser: argparse.ArgumentParser, input_path: Optional[str]) -> Any:
    source = input_path or "stdin"
    try:
        if input_path is None:
            return json.load(sys.stdin)
        with open(input_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        parser.error(f"Input file not found: {input_path}")
    except OSError as exc:
        parser.error(f"Could not read {source}: {exc.strerror or exc}")
    except UnicodeDecodeError as exc:
        parser.error(f"Invalid UTF-8 in {source}: {exc.reason} at byte {exc.start}")
    except json.JSONDecodeError as exc:
        parser.error(
            f"Invalid JSON in {source}: {exc.msg} (line {exc.lineno}, column {exc.colno})"
        )


def write_schema(parser: argparse.ArgumentParser, output_path: str, text: str) -> None:
    try:
        output_dir = os.path.dirname(output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text + "\n")
    except OSError as exc:
        parser.error(f"Could not write schema to {output_path}: {exc.strerror or exc}")


def non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("must be an integer") from None
    if parsed < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jssb",
        description="Generate a JSON Schema from example JSON documents",
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        metavar="INPUT",
        help="Input JSON file(s); several files are merged into one schema (default: stdin)",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output schema file, '-' for stdout (default: <input-name>.schema.json, stdout for stdin)",
    )
    parser.add_argument(
        "-t", "--title", default=None, help="Schema title (default: derived from the file name)"
    )
    parser.add_argument("--no-examples", action="store_true", help="Exclude examples from the schema")
    parser.add_argument("--no-format", action="store_true", help="Disable string format detection")
    parser.add_argument(
        "--no-required",
        action="store_true",
        help="Don't mark object properties as required",
    )
    parser.add_argument(
        "--additional-props",
        action="store_true",
        help="Allow additional properties in objects",
    )
    parser.add_argument(
        "--infer-enums",
        action="store_true",
        help="Infer enums from values repeated across array elements",
    )
    parser.add_argument(
        "--enum-threshold",
        type=non_negative_int,
        default=5,
        metavar="N",
        help="Max distinct values for enum inference (default: 5)",
    )
    parser.add_argument("--minify", action="store_true", help="Write compact/minified JSON")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug details")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    logger.setLevel(level)

    if not args.inputs and sys.stdin.isatty():
        parser.error("No input file given and nothing piped on stdin")

    builder = JsonSchemaBuilder(
        include_examples=not args.no_examples,
        detect_format=not args.no_format,
        required_by_default=not args.no_required,
        additional_properties=args.additional_props,
        infer_enums=args.infer_enums,
        enum_threshold=args.enum_threshold,
    )

    input_paths: List[Optional[str]] = list(args.inputs) or [None]
    samples = []
    for input_path in input_paths:
        logger.info("Reading JSON from: %s", input_path or "stdin")
        samples.append(load_input_json(parser, input_path))

    first_input = input_paths[0]
    title = args.title
    if title is None and first_input is not None:
        title = default_title(first_input)
    output_path = args.output
    if output_path is None and first_input is not None:
        output_path = default_output_path(first_input)

    logger.info("Generating JSON schema...")
    if len(samples) == 1:
        schema = builder.build(samples[0], title)
    else:
        schema = builder.build_from_multiple_samples(samples, title)

    if args.minify:
        text = json.dumps(schema, ensure_ascii=False, separators=(",", ":"))
    else:
        text = json.dumps(schema, indent=2, ensure_ascii=False)

    if output_path is None or output_path == "-":
        print(text)
        return

    logger.info("Writing schema to: %s", output_path)
    write_schema(parser, output_path, text)
    logger.info("JSON schema generated successfully")
    logger.info("Input: %s", ", ".join(path or "stdin" for path in input_paths))
    logger.info("Output: %s", output_path)
    if title:
        logger.info("Title: %s", title)


if __name__ == "__main__":
    main()
