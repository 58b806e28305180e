from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from sqlmodel import Session, select

from app.config import settings
from app.models.content import Content, ContentType
from app.services.errors import (
    ContentNotFoundError,
    UnsupportedContentTypeError,
    ValidationError,
)


@dataclass(frozen=True)
class ContentReference:
    content_type: ContentType
    content_id: str
    price: float
    currency: str
    title: str
    slug: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return self.price == 0


# Per-variant identifier field, then generic fallbacks
ID_FIELDS = {
    ContentType.COURSE: ("courseId", "course_id"),
    ContentType.LESSON: ("lessonId", "lesson_id"),
    ContentType.EVENT: ("eventId", "event_id"),
    ContentType.BUNDLE: ("bundleId", "bundle_id"),
}
GENERIC_ID_FIELDS = ("content_id", "contentId", "id")

LABELS = {
    ContentType.COURSE: "Curso",
    ContentType.LESSON: "Aula",
    ContentType.EVENT: "Evento",
    ContentType.BUNDLE: "Pacote",
}

VERBS = {
    ContentType.COURSE: {"free": "Acessar", "paid": "Comprar"},
    ContentType.LESSON: {"free": "Acessar", "paid": "Comprar"},
    ContentType.EVENT: {"free": "Participar", "paid": "Inscrever"},
    ContentType.BUNDLE: {"free": "Acessar", "paid": "Comprar"},
}


def parse_content_type(content_type: Union[str, ContentType]) -> ContentType:
    if isinstance(content_type, ContentType):
        return content_type
    try:
        return ContentType(str(content_type).lower())
    except ValueError:
        raise UnsupportedContentTypeError(content_type)


def _content_id(content_type: ContentType, raw: Mapping[str, Any]) -> str:
    for field in ID_FIELDS[content_type] + GENERIC_ID_FIELDS:
        value = raw.get(field)
        if value not in (None, ""):
            return str(value)
    raise ValidationError(f"{content_type.value} is missing an identifier")


def _price(raw: Mapping[str, Any]) -> float:
    price = raw.get("price")
    if price is None:
        return 0.0
    try:
        price = round(float(price), 2)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid price: {price!r}")
    if price < 0:
        raise ValidationError(f"Price cannot be negative: {price}")
    return price


def resolve(
    content_type: Union[str, ContentType],
    raw_content: Union[Mapping[str, Any], Content],
) -> ContentReference:
    """
    Normalize a course, lesson, event or bundle into a ContentReference.

    ``raw_content`` may be a catalog row or a plain mapping using either the
    per-type identifier (``courseId``, ``eventId`` ...) or a generic ``id``.
    """
    kind = parse_content_type(content_type)

    if isinstance(raw_content, Content):
        raw: Dict[str, Any] = raw_content.model_dump()
    else:
        raw = dict(raw_content)

    return ContentReference(
        content_type=kind,
        content_id=_content_id(kind, raw),
        price=_price(raw),
        currency=(raw.get("currency") or settings.DEFAULT_CURRENCY).upper(),
        title=raw.get("title") or LABELS[kind],
        slug=raw.get("slug"),
    )


def load_reference(
    session: Session,
    content_type: Union[str, ContentType],
    content_id: str,
) -> ContentReference:
    """Resolve content from the catalog, the only trusted source of prices."""
    kind = parse_content_type(content_type)

    content = session.exec(
        select(Content)
        .where(Content.content_type == kind.value)
        .where(Content.content_id == str(content_id))
    ).first()

    if not content or not content.is_published:
        raise ContentNotFoundError(f"{kind.value} {content_id} not found")

    return resolve(kind, content)


# ---------- labels (display metadata) ----------

def label(content_type: Union[str, ContentType]) -> str:
    return LABELS[parse_content_type(content_type)]


def verbs(content_type: Union[str, ContentType]) -> Dict[str, str]:
    return VERBS[parse_content_type(content_type)]


def button_text(ref: ContentReference) -> str:
    verb = verbs(ref.content_type)
    if ref.is_free:
        return f"{verb['free']} Grátis"
    return f"{verb['paid']} por {ref.price:g} {ref.currency}"


def access_url(ref: ContentReference) -> str:
    if ref.content_type == ContentType.COURSE:
        return f"/learn/{ref.slug or ref.content_id}"
    if ref.content_type == ContentType.LESSON:
        return f"/lessons/{ref.content_id}"
    if ref.content_type == ContentType.EVENT:
        return f"/events/{ref.content_id}"
    return f"/bundles/{ref.content_id}"
