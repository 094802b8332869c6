"""
Parsers for the upstream response shapes

Every parser turns an upstream body into Python data or raises
ShapeViolation, which the resolver treats as a failed strategy.
"""
import json
import re
from typing import Any, List

import structlog
from lxml import etree, html
from pydantic import ValidationError

from .errors import ShapeViolation
from .models import UNRATED, DoubanSubject, NormalizedItem

logger = structlog.get_logger(__name__)

SUBJECT_ID_PATTERN = re.compile(r'/subject/(\d+)/?')


def _reject_constant(name: str):
    raise ShapeViolation(f"Body contains non-finite number: {name}")


def load_json(text: str) -> Any:
    """Strict JSON: NaN and Infinity are rejected so the payload can be re-served."""
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except (json.JSONDecodeError, TypeError) as e:
        raise ShapeViolation(f"Body is not valid JSON: {e}")


class JsonParser:
    """Any JSON document, used by the raw relay."""

    def parse(self, text: str) -> Any:
        return load_json(text)


class SubjectsParser:
    """``{"subjects": [{id, title, cover, rate}, ...]}`` from search_subjects."""

    def parse(self, text: str) -> List[NormalizedItem]:
        data = load_json(text)
        subjects = data.get('subjects') if isinstance(data, dict) else None
        if not isinstance(subjects, list):
            raise ShapeViolation("Payload has no subjects array")

        try:
            return [NormalizedItem.from_subject(DoubanSubject.model_validate(s)) for s in subjects]
        except ValidationError as e:
            raise ShapeViolation(f"Malformed subject: {e.errors()[0]['msg']}")


class TagsParser:
    """``{"tags": [...]}`` from search_tags."""

    def parse(self, text: str) -> List[str]:
        data = load_json(text)
        tags = data.get('tags') if isinstance(data, dict) else None
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ShapeViolation("Payload has no tags array")
        return tags


class Top250Parser:
    """The server-rendered top250 ranking page.

    Each ``div.item`` block carries a subject link, a poster image whose
    ``alt`` is the title, and a ``span.rating_num``. Blocks missing the link,
    title or image are skipped.
    """

    def parse(self, text: str) -> List[NormalizedItem]:
        try:
            tree = html.fromstring(text)
        except (etree.ParserError, ValueError) as e:
            raise ShapeViolation(f"Unparsable HTML: {e}")

        if not tree.xpath('//ol[contains(@class, "grid_view")]'):
            raise ShapeViolation("Ranking list not found in page")

        items = []
        for block in tree.xpath('//div[@class="item"]'):
            item = self._parse_block(block)
            if item is None:
                logger.debug("top250_block_skipped", snippet=etree.tostring(block, encoding=str)[:120])
                continue
            items.append(item)
        return items

    def _parse_block(self, block):
        subject_id = None
        for href in block.xpath('.//a/@href'):
            match = SUBJECT_ID_PATTERN.search(href)
            if match:
                subject_id = match.group(1)
                break

        images = block.xpath('.//img[@alt and @src]')
        if not subject_id or not images:
            return None

        title = images[0].get('alt').strip()
        image = images[0].get('src').strip()
        if not title or not image:
            return None

        rating = ''.join(block.xpath('.//span[@class="rating_num"]/text()')).strip()
        return NormalizedItem(
            id=subject_id,
            title=title,
            poster=re.sub(r'^http:', 'https:', image),
            rate=rating or UNRATED,
        )
