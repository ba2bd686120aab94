"""
Customer tag handling

Shopify stores customer tags as a single comma-separated string.
Inside the service tags are a TagSet; the joined string only exists
at the database and API edges.
"""
from typing import Iterable, Iterator, List, Optional

TAG_SEPARATOR = ", "
GENDER_TAG_PREFIX = "gender:"


class TagSet:
    """Ordered, de-duplicated set of customer tags"""

    def __init__(self, tags: Optional[Iterable[str]] = None):
        self._tags: List[str] = []
        for tag in tags or []:
            self.add(tag)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TagSet":
        """Build a TagSet from a comma-separated tag string"""
        if not raw:
            return cls()
        return cls(part.strip() for part in raw.split(","))

    def serialize(self) -> Optional[str]:
        """Comma-joined form, None when empty"""
        if not self._tags:
            return None
        return TAG_SEPARATOR.join(self._tags)

    def add(self, tag: str) -> None:
        tag = (tag or "").strip()
        if tag and tag not in self._tags:
            self._tags.append(tag)

    def without_prefix(self, prefix: str) -> "TagSet":
        """Copy with every tag starting with prefix removed"""
        return TagSet(t for t in self._tags if not t.startswith(prefix))

    def with_tag(self, tag: str) -> "TagSet":
        result = TagSet(self._tags)
        result.add(tag)
        return result

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self._tags

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TagSet):
            return self._tags == other._tags
        return NotImplemented

    def __repr__(self) -> str:
        return f"TagSet({self._tags!r})"


def gender_tag(gender: str) -> str:
    return f"{GENDER_TAG_PREFIX}{gender}"


def apply_gender_tag(tags: TagSet, gender: str) -> TagSet:
    """
    Replace any existing gender:* tag with the tag for gender.

    Only the gender tag is touched; every other tag keeps its position.
    """
    return tags.without_prefix(GENDER_TAG_PREFIX).with_tag(gender_tag(gender))
