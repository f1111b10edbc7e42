"""Typed view over the metadata stored on a link.

The ``links.metadata`` column is a flat JSON object shared with the rest of
the application: network-fetched keys live at the top level next to a
user-curated ``highlights`` array. Inside the pipeline the two halves are kept
apart so that a merge can only ever touch the fetched half.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from linkmeta.main.exceptions import InvalidLinkMetadataError

HIGHLIGHTS_KEY = "highlights"


class Highlight(BaseModel):
    # Unknown keys are kept and values are never coerced, so highlights
    # round-trip unchanged
    model_config = ConfigDict(frozen=True, extra="allow", strict=True)

    timestamp: int = Field(ge=0)
    label: str = ""


class LinkMetadata(BaseModel):
    """Stored metadata split into user highlights and fetched keys.

    ``highlights`` is only written back when it was given, so a stored
    ``"highlights": []`` or ``"highlights": null`` keeps its key and value.
    """

    highlights: list[Highlight] | None = None
    external: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_highlights_key(self) -> bool:
        return HIGHLIGHTS_KEY in self.model_fields_set

    @classmethod
    def from_storage(cls, raw: Mapping[str, Any] | None) -> LinkMetadata:
        """Split a stored metadata object into highlights and fetched keys.

        Raises:
            InvalidLinkMetadataError: The stored highlights cannot be parsed.
                Dropping them would lose user data on the next write.
        """
        if not raw:
            return cls()

        external = {key: value for key, value in raw.items() if key != HIGHLIGHTS_KEY}
        if HIGHLIGHTS_KEY not in raw:
            return cls(external=external)

        raw_highlights = raw[HIGHLIGHTS_KEY]
        if raw_highlights is None:
            return cls(highlights=None, external=external)

        if not isinstance(raw_highlights, list):
            raise InvalidLinkMetadataError(
                f"highlights must be a list, got {type(raw_highlights).__name__}"
            )

        try:
            highlights = [Highlight.model_validate(item) for item in raw_highlights]
        except ValidationError as exc:
            raise InvalidLinkMetadataError(f"invalid highlight: {exc}") from exc

        return cls(highlights=highlights, external=external)

    def to_storage(self) -> dict[str, Any]:
        """Flatten back into the shape stored in ``links.metadata``."""
        stored = dict(self.external)
        if self.has_highlights_key:
            stored[HIGHLIGHTS_KEY] = (
                None
                if self.highlights is None
                else [
                    highlight.model_dump(exclude_unset=True)
                    for highlight in self.highlights
                ]
            )
        return stored


def merge_fetched_metadata(
    existing: LinkMetadata | None, fetched: Mapping[str, Any]
) -> LinkMetadata:
    """Overlay freshly fetched metadata onto what is currently stored.

    Every fetched key overwrites or extends ``external``. Highlights always
    come from ``existing``, including an empty or null value; a ``highlights``
    key in the fetch result is ignored.
    """
    current = existing or LinkMetadata()

    external = dict(current.external)
    for key, value in fetched.items():
        if key == HIGHLIGHTS_KEY:
            continue
        external[key] = value

    if not current.has_highlights_key:
        return LinkMetadata(external=external)

    highlights = None if current.highlights is None else list(current.highlights)
    return LinkMetadata(highlights=highlights, external=external)
