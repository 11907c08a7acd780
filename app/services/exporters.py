"""Interchange-format encoders for reviewed annotations.

Encoders are pure functions of ``(annotations, image metadata, class
list)``.  Output follows input order so repeated exports of unchanged
data are byte-identical.  ``Rejected`` annotations are dropped from the
detection formats (YOLO, Pascal VOC, COCO); the generic JSON bundle keeps
everything.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath
from typing import Any
from xml.dom import minidom
from xml.etree.ElementTree import Element, SubElement, tostring

from app.config import OTHER_CLASS
from app.models.annotation import Annotation, AnnotationState, HistoryEntry
from app.models.export import ExportFormat, ExportResult, ExportScope, ImageMetadata

logger = logging.getLogger(__name__)

COCO_SUPERCATEGORY = "vehicle"

MIME_TYPES: dict[ExportFormat, str] = {
    ExportFormat.YOLO: "text/plain",
    ExportFormat.PASCAL_VOC: "application/xml",
    ExportFormat.COCO: "application/json",
    ExportFormat.JSON: "application/json",
}
ZIP_MIME_TYPE = "application/zip"


class ExportError(ValueError):
    """Raised by an encoder when its input cannot be represented."""


def exportable(annotations: Sequence[Annotation]) -> list[Annotation]:
    """Annotations that belong in a detection dataset (everything but ``Rejected``)."""
    return [a for a in annotations if a.state != AnnotationState.REJECTED]


def class_index(class_name: str, classes: Sequence[str]) -> int:
    """Zero-based position of *class_name*, falling back to ``Other``."""
    if class_name in classes:
        return list(classes).index(class_name)
    if OTHER_CLASS in classes:
        return list(classes).index(OTHER_CLASS)
    return len(classes)


def image_stem(image: ImageMetadata | None, fallback: str = "annotations") -> str:
    if image is None:
        return fallback
    if image.filename:
        return PurePosixPath(image.filename).stem
    return image.id


# ---------------------------------------------------------------------------
# YOLO
# ---------------------------------------------------------------------------


def encode_yolo(
    annotations: Sequence[Annotation],
    image: ImageMetadata | None,
    classes: Sequence[str],
) -> str:
    """One ``class cx cy w h`` line per annotation, normalized to 6 decimals."""
    if image is None or not image.has_dimensions:
        raise ExportError("YOLO export requires image width and height")

    w, h = float(image.width), float(image.height)
    lines: list[str] = []
    for annotation in exportable(annotations):
        box = annotation.bbox
        cx = box.x + box.width / 2
        cy = box.y + box.height / 2
        lines.append(
            f"{class_index(annotation.class_name, classes)} "
            f"{cx / w:.6f} {cy / h:.6f} {box.width / w:.6f} {box.height / h:.6f}"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Pascal VOC
# ---------------------------------------------------------------------------


def encode_pascal_voc(annotations: Sequence[Annotation], image: ImageMetadata | None) -> str:
    """A single ``<annotation>`` document for one image."""
    root = Element("annotation")
    SubElement(root, "folder").text = "images"
    SubElement(root, "filename").text = (image.filename if image and image.filename else image_stem(image))
    if image is not None and image.path:
        SubElement(root, "path").text = image.path

    source = SubElement(root, "source")
    SubElement(source, "database").text = "DetectReview"

    size_el = SubElement(root, "size")
    SubElement(size_el, "width").text = str(image.width if image and image.width else 0)
    SubElement(size_el, "height").text = str(image.height if image and image.height else 0)
    SubElement(size_el, "depth").text = "3"
    SubElement(root, "segmented").text = "0"

    for annotation in exportable(annotations):
        box = annotation.bbox
        obj_el = SubElement(root, "object")
        SubElement(obj_el, "name").text = annotation.class_name
        SubElement(obj_el, "pose").text = "Unspecified"
        SubElement(obj_el, "truncated").text = "0"
        SubElement(obj_el, "difficult").text = "1" if annotation.state == AnnotationState.MODIFIED else "0"
        SubElement(obj_el, "confidence").text = f"{annotation.confidence:.4f}"

        bndbox = SubElement(obj_el, "bndbox")
        SubElement(bndbox, "xmin").text = str(round(box.x))
        SubElement(bndbox, "ymin").text = str(round(box.y))
        SubElement(bndbox, "xmax").text = str(round(box.x + box.width))
        SubElement(bndbox, "ymax").text = str(round(box.y + box.height))

    xml_bytes = tostring(root, encoding="unicode")
    return minidom.parseString(xml_bytes).toprettyxml(indent="  ")


# ---------------------------------------------------------------------------
# COCO
# ---------------------------------------------------------------------------


def encode_coco(
    groups: Sequence[tuple[ImageMetadata, Sequence[Annotation]]],
    classes: Sequence[str],
) -> dict[str, Any]:
    """A COCO detection document covering every ``(image, annotations)`` group."""
    categories = [
        {"id": i + 1, "name": name, "supercategory": COCO_SUPERCATEGORY}
        for i, name in enumerate(classes)
    ]

    images: list[dict[str, Any]] = []
    coco_annotations: list[dict[str, Any]] = []
    for image_index, (image, annotations) in enumerate(groups, start=1):
        images.append(
            {
                "id": image_index,
                "file_name": image.filename or image.id,
                "width": image.width or 0,
                "height": image.height or 0,
            }
        )
        for annotation in exportable(annotations):
            box = annotation.bbox
            coco_annotations.append(
                {
                    "id": len(coco_annotations) + 1,
                    "image_id": image_index,
                    "category_id": class_index(annotation.class_name, classes) + 1,
                    "bbox": [box.x, box.y, box.width, box.height],
                    "area": box.width * box.height,
                    "iscrowd": 0,
                    "score": annotation.confidence,
                }
            )

    return {"images": images, "annotations": coco_annotations, "categories": categories}


# ---------------------------------------------------------------------------
# Generic JSON
# ---------------------------------------------------------------------------


def summarize(annotations: Sequence[Annotation]) -> dict[str, Any]:
    """Counts by state (all four always present) and by class (first-seen order)."""
    by_state = {state.value: 0 for state in AnnotationState}
    by_class: dict[str, int] = {}
    for annotation in annotations:
        by_state[annotation.state.value] += 1
        by_class[annotation.class_name] = by_class.get(annotation.class_name, 0) + 1
    return {"total": len(annotations), "by_state": by_state, "by_class": by_class}


def encode_json(
    groups: Sequence[tuple[ImageMetadata | None, Sequence[Annotation]]],
    history: Sequence[HistoryEntry] | None = None,
) -> dict[str, Any]:
    """Full-fidelity bundle; nothing is filtered."""
    everything: list[Annotation] = []
    images: list[dict[str, Any]] = []
    for image, annotations in groups:
        everything.extend(annotations)
        images.append(
            {
                "image": image.model_dump(mode="json") if image is not None else None,
                "annotations": [a.model_dump(mode="json") for a in annotations],
            }
        )

    bundle: dict[str, Any] = {"images": images, "summary": summarize(everything)}
    if history is not None:
        bundle["history"] = [entry.model_dump(mode="json") for entry in history]
    return bundle


# ---------------------------------------------------------------------------
# Export surface
# ---------------------------------------------------------------------------


def _zip(files: Sequence[tuple[str, str]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files:
            zf.writestr(name, content)
    buffer.seek(0)
    return buffer.getvalue()


def _unique_stems(groups: Sequence[tuple[ImageMetadata, Sequence[Annotation]]]) -> list[str]:
    seen: dict[str, int] = {}
    stems: list[str] = []
    for image, _ in groups:
        stem = image_stem(image)
        if stem in seen:
            seen[stem] += 1
            stem = f"{stem}_{seen[stem]}"
        else:
            seen[stem] = 0
        stems.append(stem)
    return stems


def export(
    fmt: ExportFormat | str,
    scope: ExportScope | str,
    annotations: Sequence[Annotation] | Mapping[str, Sequence[Annotation]],
    image_metadata: ImageMetadata | Mapping[str, ImageMetadata] | None,
    classes: Sequence[str],
    history: Sequence[HistoryEntry] | None = None,
) -> ExportResult:
    """Encode annotations for download.

    With ``scope="current"`` *annotations* is one image's list and
    *image_metadata* its record.  With ``scope="all"`` both are keyed by
    image id; COCO and JSON produce one document, YOLO and Pascal VOC a
    zip archive of per-image files.  Failures are reported in the result,
    never raised.
    """
    try:
        fmt = ExportFormat(fmt)
        scope = ExportScope(scope)
    except ValueError as exc:
        logger.warning("Unsupported export request: %s", exc)
        return ExportResult(success=False, format=ExportFormat.JSON, error=str(exc))

    if scope == ExportScope.CURRENT:
        if isinstance(annotations, Mapping):
            return ExportResult(success=False, format=fmt, scope=scope, error="Expected one image's annotations")
        image = image_metadata if isinstance(image_metadata, ImageMetadata) else None
        if image is None and annotations:
            image = ImageMetadata(id=annotations[0].image_id)
        groups: list[tuple[ImageMetadata, Sequence[Annotation]]] = (
            [(image, list(annotations))] if image is not None else []
        )
    else:
        if not isinstance(annotations, Mapping):
            return ExportResult(success=False, format=fmt, scope=scope, error="Expected annotations keyed by image")
        metadata = image_metadata if isinstance(image_metadata, Mapping) else {}
        groups = [
            (metadata.get(image_id) or ImageMetadata(id=image_id), list(items))
            for image_id, items in annotations.items()
        ]

    if not groups:
        return ExportResult(success=False, format=fmt, scope=scope, error="No image selected for export")

    try:
        result = _encode(fmt, scope, groups, classes, history)
    except ExportError as exc:
        logger.warning("Export %s/%s failed: %s", fmt.value, scope.value, exc)
        return ExportResult(success=False, format=fmt, scope=scope, error=str(exc))

    logger.info(
        "Exported %d annotations across %d image(s) as %s",
        result.annotation_count,
        result.image_count,
        fmt.value,
    )
    return result


def _encode(
    fmt: ExportFormat,
    scope: ExportScope,
    groups: list[tuple[ImageMetadata, Sequence[Annotation]]],
    classes: Sequence[str],
    history: Sequence[HistoryEntry] | None,
) -> ExportResult:
    if fmt == ExportFormat.JSON:
        count = sum(len(items) for _, items in groups)
    else:
        count = sum(len(exportable(items)) for _, items in groups)
    single = scope == ExportScope.CURRENT
    stem = image_stem(groups[0][0]) if single else "annotations"

    data: str | bytes
    if fmt == ExportFormat.YOLO:
        files = [
            (f"{name}.txt", encode_yolo(items, image, classes))
            for name, (image, items) in zip(_unique_stems(groups), groups)
        ]
        if single:
            filename, data = files[0]
        else:
            files.append(("classes.txt", "\n".join(classes)))
            filename, data = "annotations_yolo.zip", _zip(files)
    elif fmt == ExportFormat.PASCAL_VOC:
        files = [
            (f"{name}.xml", encode_pascal_voc(items, image))
            for name, (image, items) in zip(_unique_stems(groups), groups)
        ]
        if single:
            filename, data = files[0]
        else:
            filename, data = "annotations_voc.zip", _zip(files)
    elif fmt == ExportFormat.COCO:
        data = json.dumps(encode_coco(groups, classes), indent=2)
        filename = f"{stem}_coco.json"
    else:
        data = json.dumps(encode_json(groups, history), indent=2)
        filename = f"{stem}_annotations.json" if single else "annotations.json"

    return ExportResult(
        success=True,
        format=fmt,
        scope=scope,
        data=data,
        filename=filename,
        mime_type=ZIP_MIME_TYPE if isinstance(data, bytes) else MIME_TYPES[fmt],
        annotation_count=count,
        image_count=len(groups),
    )
