"""Content pack coverage tracking and repair.

When the RESULTS rows ask the model to produce one content pack per input
item, the model often stops early or skips items without saying so. This
module works out which pack IDs are expected, checks which ones the reply
actually contains, and re-prompts for the missing ones in small batches.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from functools import reduce
from typing import Awaitable, Callable, Sequence

from sogood.messages import merge_consecutive
from sogood.services.anthropic_client import CompletionResult
from sogood_models import ChatTurn, PromptSnippet

logger = logging.getLogger(__name__)

ID_SOURCE_CONTENT = "content_pack_id"
ID_SOURCE_ROW_INDEX = "result_row_index"
ID_SOURCE_NONE = "none"

SECTION_ORDER = (
    "Hook",
    "CTA",
    "Final Post",
    "Variants",
    "Engagement Add-ons",
    "Asset Brief",
)
VARIANT_ORDER = ("Curiosity-first", "Story-first", "Minimalist")
CONTINUE_TOKEN = "CONTINUE_FROM"
SERVER_COVERAGE_HEADER = "[SERVER COVERAGE CHECK]"
CONTINUE_ASSISTANT_TURN = "(Output paused before every content pack was delivered. Continuing.)"

DEFAULT_MAX_PASSES = 12
DEFAULT_BATCH_SIZE = 6
DEFAULT_MAX_STALLED = 2

_TOKEN = r"[A-Za-z0-9][A-Za-z0-9._:-]{1,120}(?![A-Za-z0-9._:-])"
_MARKUP = r"(?:\*\*|__)?"

ID_LINE = re.compile(
    rf"^[ \t]*(?:[-*+•][ \t]+)?(?:#{{1,6}}[ \t]*)?{_MARKUP}[ \t]*id[ \t]*{_MARKUP}[ \t]*:"
    rf"[ \t]*{_MARKUP}[ \t]*(?P<token>{_TOKEN})(?P<rest>.*)$",
    re.IGNORECASE | re.MULTILINE,
)
JSON_ID = re.compile(rf'"id"\s*:\s*"(?P<token>{_TOKEN})"', re.IGNORECASE)
CONTINUE_LINE = re.compile(rf"^\s*{CONTINUE_TOKEN}\s*:", re.IGNORECASE)


def normalize_text(text: str) -> str:
    """Unicode-compatibility normalized, lowercased text."""
    return unicodedata.normalize("NFKC", text or "").lower()


def looks_like_content_pack(text: str) -> bool:
    """Keyword sniffing for content-pack style task data."""
    t = normalize_text(text)
    return (
        ("content pack" in t or "final post" in t)
        and ("variants" in t or "asset brief" in t)
        and "hook" in t
        and "cta" in t
    )


def _clean_token(token: str) -> str | None:
    cleaned = token.rstrip(".:")
    return cleaned if len(cleaned) >= 2 else None


def extract_expected_ids(results: Sequence[PromptSnippet]) -> list[str]:
    """Explicit pack IDs found in the results rows, in order of first appearance."""
    seen: set[str] = set()
    ids: list[str] = []
    for snippet in results:
        found = [(m.start(), m.group("token")) for m in ID_LINE.finditer(snippet.content)]
        found.extend((m.start(), m.group("token")) for m in JSON_ID.finditer(snippet.content))
        for _, token in sorted(found):
            cleaned = _clean_token(token)
            if cleaned is None or cleaned.casefold() in seen:
                continue
            seen.add(cleaned.casefold())
            ids.append(cleaned)
    return ids


@dataclass
class ContentPackController:
    """Per-request output contract for content pack tasks."""

    enabled: bool = False
    expected_ids: list[str] = field(default_factory=list)
    id_source: str = ID_SOURCE_NONE
    # Synthetic ID -> source row title, only for row-index IDs
    row_titles: dict[str, str] = field(default_factory=dict)

    @property
    def uses_row_ids(self) -> bool:
        return self.id_source == ID_SOURCE_ROW_INDEX


def build_controller(results: Sequence[PromptSnippet]) -> ContentPackController:
    """Enable the controller when any results row looks like a content pack."""
    if not any(looks_like_content_pack(s.content) for s in results):
        return ContentPackController()

    ids = extract_expected_ids(results)
    if ids:
        return ContentPackController(enabled=True, expected_ids=ids, id_source=ID_SOURCE_CONTENT)

    row_titles = {}
    for index, snippet in enumerate(results, start=1):
        row_titles[f"ROW-{index}"] = (snippet.title or "").strip() or f"Row {index}"
    return ContentPackController(
        enabled=True,
        expected_ids=list(row_titles),
        id_source=ID_SOURCE_ROW_INDEX,
        row_titles=row_titles,
    )


# ============= Output Parsing =============


@dataclass(frozen=True)
class Outside:
    """Not inside any pack block."""


@dataclass(frozen=True)
class Inside:
    """Collecting lines for one pack block."""

    block_id: str
    lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParseState:
    mode: Outside | Inside = Outside()
    blocks: tuple[tuple[str, str], ...] = ()
    stopped: bool = False

    def flush(self) -> "ParseState":
        if isinstance(self.mode, Inside):
            body = "\n".join(self.mode.lines).strip()
            if body:
                return ParseState(Outside(), self.blocks + ((self.mode.block_id, body),))
        return ParseState(Outside(), self.blocks)


def is_coverage_marker(line: str) -> bool:
    """Whether a line starts a model or server coverage check."""
    t = normalize_text(line).strip().lstrip("#*>_- \t")
    return t.startswith("coverage check") or t.startswith(SERVER_COVERAGE_HEADER.lower())


def _step(lookup: dict[str, str]) -> Callable[[ParseState, str], ParseState]:
    def step(state: ParseState, line: str) -> ParseState:
        if state.stopped:
            return state
        if is_coverage_marker(line):
            flushed = state.flush()
            return ParseState(flushed.mode, flushed.blocks, stopped=True)

        match = ID_LINE.match(unicodedata.normalize("NFKC", line))
        if match:
            flushed = state.flush()
            token = _clean_token(match.group("token"))
            canonical = lookup.get(token.casefold()) if token else None
            if canonical is None:
                return flushed
            rest = match.group("rest").strip().strip("*_").strip(" -:|")
            return ParseState(Inside(canonical, (rest,) if rest else ()), flushed.blocks)

        if isinstance(state.mode, Inside) and not CONTINUE_LINE.match(line):
            mode = Inside(state.mode.block_id, state.mode.lines + (line,))
            return ParseState(mode, state.blocks)
        return state

    return step


def merge_blocks(existing: dict[str, str], new: dict[str, str]) -> dict[str, str]:
    """Combine block maps, keeping the longer body when an ID recurs."""
    merged = dict(existing)
    for block_id, body in new.items():
        if len(body) > len(merged.get(block_id, "")):
            merged[block_id] = body
    return merged


def parse_output_blocks(reply: str, expected_ids: Sequence[str]) -> dict[str, str]:
    """Split a model reply into per-ID pack bodies.

    Text before the first recognized ID line, text under unknown IDs and
    everything after a coverage check marker is discarded.
    """
    lookup = {i.casefold(): i for i in expected_ids}
    final = reduce(_step(lookup), (reply or "").splitlines(), ParseState()).flush()
    blocks: dict[str, str] = {}
    for block_id, body in final.blocks:
        blocks = merge_blocks(blocks, {block_id: body})
    return blocks


@dataclass
class Coverage:
    """Which expected IDs have an output block."""

    output_ids: list[str]
    missing_ids: list[str]


def compute_coverage(blocks: dict[str, str], expected_ids: Sequence[str]) -> Coverage:
    """Split expected IDs into covered and missing, keeping their order."""
    output_ids = [i for i in expected_ids if blocks.get(i, "").strip()]
    missing_ids = [i for i in expected_ids if not blocks.get(i, "").strip()]
    return Coverage(output_ids=output_ids, missing_ids=missing_ids)


# ============= Prompt Text =============


def _section_order_text() -> str:
    parts = []
    for section in SECTION_ORDER:
        if section == "Variants":
            parts.append(f"Variants [{', '.join(VARIANT_ORDER)}]")
        else:
            parts.append(section)
    return " -> ".join(parts)


def _row_mapping_lines(controller: ContentPackController) -> list[str]:
    return [f"- {row_id} = {title}" for row_id, title in controller.row_titles.items()]


def build_output_format_block(controller: ContentPackController) -> str:
    """Mandatory output format injected into the system prompt."""
    ids = ", ".join(controller.expected_ids)
    lines = [
        "=== MANDATORY OUTPUT FORMAT (content packs) ===",
        "1. Do not ask clarifying questions. Work with the data provided.",
        f"2. Process every ID. Input IDs ({len(controller.expected_ids)}): {ids}",
        "3. The number of content packs in your output must equal the number of input IDs.",
        "4. Preserve placeholder tokens (for example [LINK], {name}, <PRODUCT>) exactly as written.",
        "5. Start every content pack with its own line reading exactly `ID: <id>`.",
        f"6. Sections in each pack, in this order: {_section_order_text()}.",
        f"7. If you run out of space, stop after a complete pack and write `{CONTINUE_TOKEN}:<next id>` on its own line.",
        "8. End with this block, using these exact field names:",
        "Coverage Check",
        "Input IDs: <comma-separated IDs>",
        "Output IDs: <comma-separated IDs>",
        "Missing IDs: <comma-separated IDs or none>",
    ]
    if controller.uses_row_ids:
        lines.append("")
        lines.append("The RESULTS rows carry no explicit IDs. Use these row IDs:")
        lines.extend(_row_mapping_lines(controller))
    return "\n".join(lines)


def build_repair_instruction(
    controller: ContentPackController,
    target_ids: Sequence[str],
    completed_ids: Sequence[str],
) -> str:
    """User turn asking the model for a specific batch of missing packs."""
    lines = [
        "Your previous output did not include every required content pack.",
        f"All input IDs ({len(controller.expected_ids)}): {', '.join(controller.expected_ids)}",
        f"Write ONLY these content packs now, in this order: {', '.join(target_ids)}",
        f"Already completed (do not repeat): {', '.join(completed_ids) or 'none'}",
        "Start each pack with its own line reading exactly `ID: <id>`.",
        f"Sections in each pack, in this order: {_section_order_text()}.",
        "Preserve placeholder tokens exactly as written.",
        f"If you run out of space, stop after a complete pack and write `{CONTINUE_TOKEN}:<next id>`.",
        "Do not ask questions and do not add commentary outside the packs.",
    ]
    if controller.uses_row_ids:
        lines.append("Row IDs map to RESULTS rows as follows:")
        lines.extend(_row_mapping_lines(controller))
    return "\n".join(lines)


def format_server_coverage_check(expected_ids: Sequence[str], coverage: Coverage) -> str:
    """Coverage summary appended when packs are still missing."""
    def listing(ids: Sequence[str]) -> str:
        return ", ".join(ids) if ids else "none"

    return "\n".join(
        [
            SERVER_COVERAGE_HEADER,
            f"Input IDs ({len(expected_ids)}): {listing(expected_ids)}",
            f"Output IDs ({len(coverage.output_ids)}): {listing(coverage.output_ids)}",
            f"Missing IDs ({len(coverage.missing_ids)}): {listing(coverage.missing_ids)}",
        ]
    )


def assemble_reply(
    blocks: dict[str, str],
    expected_ids: Sequence[str],
    coverage: Coverage,
    original_reply: str,
) -> str:
    """Collected packs in expected order, plus a coverage check if incomplete."""
    parts = [f"ID: {i}\n{blocks[i]}" for i in expected_ids if blocks.get(i, "").strip()]
    if not parts:
        parts = [original_reply.strip()]
    if coverage.missing_ids:
        parts.append(format_server_coverage_check(expected_ids, coverage))
    return "\n\n".join(p for p in parts if p)


# ============= Repair Loop =============

Invoke = Callable[[list[ChatTurn]], Awaitable[CompletionResult]]


@dataclass
class RepairOutcome:
    """Result of coverage verification and repair."""

    reply: str
    coverage: Coverage
    passes: int = 0
    errors: list[str] = field(default_factory=list)


class CoverageRepairer:
    """Drives repair passes until every pack is present or the budget runs out."""

    def __init__(
        self,
        controller: ContentPackController,
        max_passes: int = DEFAULT_MAX_PASSES,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_stalled: int = DEFAULT_MAX_STALLED,
    ):
        self.controller = controller
        self.max_passes = max_passes
        self.batch_size = max(1, batch_size)
        self.max_stalled = max(1, max_stalled)

    async def run(
        self,
        initial_reply: str,
        turns: Sequence[ChatTurn],
        invoke: Invoke,
    ) -> RepairOutcome:
        """Verify the first reply and repair missing packs.

        Args:
            initial_reply: Text of the first completion
            turns: The conversation turns the first completion answered
            invoke: Sends turns to the model with the same system prompt

        Returns:
            RepairOutcome with the final reply and coverage

        """
        expected = self.controller.expected_ids
        blocks = parse_output_blocks(initial_reply, expected)
        coverage = compute_coverage(blocks, expected)
        if not coverage.missing_ids:
            return RepairOutcome(reply=initial_reply, coverage=coverage)

        logger.info(
            f"Content pack coverage {len(coverage.output_ids)}/{len(expected)}, "
            f"starting repair"
        )

        passes = 0
        stalled = 0
        errors: list[str] = []
        while coverage.missing_ids and passes < self.max_passes and stalled < self.max_stalled:
            passes += 1
            target = coverage.missing_ids[: self.batch_size]
            instruction = build_repair_instruction(self.controller, target, coverage.output_ids)
            repair_turns = merge_consecutive(
                [
                    *turns,
                    ChatTurn(role="assistant", content=CONTINUE_ASSISTANT_TURN),
                    ChatTurn(role="user", content=instruction),
                ]
            )

            before = len(blocks)
            result = await invoke(repair_turns)
            if not result.ok:
                stalled += 1
                errors.append(result.error or "Unknown error")
                logger.warning(f"Repair pass {passes} failed: {result.error}")
                continue

            blocks = merge_blocks(blocks, parse_output_blocks(result.text or "", expected))
            coverage = compute_coverage(blocks, expected)
            if len(blocks) > before:
                stalled = 0
            else:
                stalled += 1
                logger.warning(f"Repair pass {passes} made no progress on {target}")

        if coverage.missing_ids:
            logger.warning(
                f"Content pack repair ended after {passes} passes, "
                f"missing {len(coverage.missing_ids)}: {coverage.missing_ids}"
            )

        return RepairOutcome(
            reply=assemble_reply(blocks, expected, coverage, initial_reply),
            coverage=coverage,
            passes=passes,
            errors=errors,
        )
