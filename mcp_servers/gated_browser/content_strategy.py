"""
Content strategy engine.

Decides what a get_content call returns and at which granularity:

1. Mode resolution: full page, main content block, or summary (headings and
   key paragraphs). Whole-page requests default to ``main``.
2. Pre-flight estimation: token cost of the HTML and text renderings of the
   chosen mode, then a strategy (full html, full text, chunked text/html).
3. Retrieval and processing through the TokenManager.

Resource blocking (Fetch interception) is advisory: setup failures are logged
and ignored, and it is always switched off again before returning.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from . import js_snippets
from .config import TokenBudget
from .errors import (
    ContentTooLarge,
    ElementNotFound,
    EstimationFailure,
    PreconditionError,
    ResourceBlockingFailure,
)
from .page import InterceptedRequest, PageProvider
from .tokens import ContentChunk, ContentStrategy, ProcessedContent, TokenManager
from .workflow import WorkflowGate, WorkflowState

logger = logging.getLogger("mcp.gated_browser.content")

ContentType = Literal["html", "text"]
ContentMode = Literal["full", "main", "summary"]
BlockingLevel = Literal["disabled", "minimal", "standard", "aggressive"]
ChunkingPreference = Literal["avoid", "allow", "prefer"]

CONTENT_TYPES = ("html", "text")
CONTENT_MODES = ("full", "main", "summary")
BLOCKING_LEVELS = ("disabled", "minimal", "standard", "aggressive")
CHUNKING_PREFERENCES = ("avoid", "allow", "prefer")

CHUNK_WARNING_THRESHOLD = 3
ESTIMATION_SAMPLE_SIZE = 2000

MAIN_CONTENT_SELECTORS = (
    "main",
    "article",
    '[role="main"]',
    ".main-content",
    ".content",
    ".post-content",
    ".entry-content",
    ".article-content",
    "#main-content",
    "#content",
    "#main",
)

EXCLUDE_SELECTORS = (
    "script",
    "style",
    "nav",
    "header",
    "footer",
    ".navigation",
    ".nav",
    ".sidebar",
    ".ads",
    ".advertisement",
    ".social-share",
    ".comments",
    '[aria-hidden="true"]',
    ".sr-only",
)

BLOCKED_RESOURCE_TYPES = frozenset(
    {"image", "media", "font", "texttrack", "object", "beacon", "csp_report", "imageset"}
)

BLOCKED_URL_PATTERNS = (
    re.compile(r".*\.(css|jpg|jpeg|png|gif|svg|ico|woff|woff2|ttf|eot)(\?.*)?$", re.IGNORECASE),
    re.compile(r".*/(ads|analytics|tracking|social|comments)/", re.IGNORECASE),
    re.compile(r"google-analytics\.com"),
    re.compile(r"googletagmanager\.com"),
    re.compile(r"facebook\.net"),
    re.compile(r"twitter\.com/widgets"),
    re.compile(r"linkedin\.com/widget"),
    re.compile(r"doubleclick\.net"),
    re.compile(r"googlesyndication\.com"),
    re.compile(r"amazon-adsystem\.com"),
)

_MINIMAL_RESOURCE_TYPES = frozenset({"image", "media", "font"})
_MINIMAL_ASSET_URL = re.compile(r"\.(jpg|jpeg|png|gif|svg|ico|woff|woff2|ttf|eot)(\?.*)?$", re.IGNORECASE)
_AGGRESSIVE_ALLOWED_TYPES = frozenset({"document", "stylesheet", "script"})
_SIZE_KEYS = ("htmlLength", "textLength", "scripts", "svgs", "tables", "codeBlocks")


def should_block(level: str, resource_type: str, url: str) -> bool:
    """Blocking decision for one intercepted request at the given level."""
    if level == "minimal":
        return resource_type in _MINIMAL_RESOURCE_TYPES or bool(_MINIMAL_ASSET_URL.search(url))
    if level == "standard":
        return (
            resource_type in BLOCKED_RESOURCE_TYPES
            or any(p.search(url) for p in BLOCKED_URL_PATTERNS)
            or "ads" in url
            or "analytics" in url
        )
    if level == "aggressive":
        return resource_type not in _AGGRESSIVE_ALLOWED_TYPES or any(p.search(url) for p in BLOCKED_URL_PATTERNS)
    return False


def _choice(args: dict[str, Any], key: str, allowed: tuple[str, ...]) -> str | None:
    value = args.get(key)
    if value is None or value == "":
        return None
    value = str(value)
    if value not in allowed:
        raise ValueError(f"Invalid {key}: {value!r} (expected one of: {', '.join(allowed)})")
    return value


@dataclass
class ContentRequest:
    type: ContentType | None = None
    selector: str | None = None
    estimate_only: bool = False
    max_tokens: int | None = None
    chunking_preference: ChunkingPreference | None = None
    content_mode: ContentMode | None = None
    resource_blocking: BlockingLevel | None = None

    @classmethod
    def from_args(cls, args: dict[str, Any] | None) -> ContentRequest:
        """Build from tool arguments; unrecognized keys are ignored."""
        args = args or {}
        selector = args.get("selector")
        max_tokens = args.get("maxTokens")
        return cls(
            type=_choice(args, "type", CONTENT_TYPES),  # type: ignore[arg-type]
            selector=str(selector) if selector else None,
            estimate_only=bool(args.get("estimateOnly", False)),
            max_tokens=int(max_tokens) if max_tokens is not None else None,
            chunking_preference=_choice(args, "chunkingPreference", CHUNKING_PREFERENCES),  # type: ignore[arg-type]
            content_mode=_choice(args, "contentMode", CONTENT_MODES),  # type: ignore[arg-type]
            resource_blocking=_choice(args, "resourceBlocking", BLOCKING_LEVELS),  # type: ignore[arg-type]
        )

    def resolved_mode(self) -> str:
        return self.content_mode or ("full" if self.selector else "main")

    def resolved_blocking(self) -> str:
        if self.resource_blocking:
            return self.resource_blocking
        return "standard" if self.resolved_mode() in ("main", "summary") else "disabled"


@dataclass
class PreflightEstimate:
    html_tokens: int
    text_tokens: int
    recommended_type: ContentType
    requires_chunking: bool
    strategy: ContentStrategy
    warnings: list[str] = field(default_factory=list)


@dataclass
class PageSizeCheck:
    likely_large: bool
    estimated_tokens: int
    details: dict[str, int] = field(default_factory=dict)


@dataclass
class ContentMetadata:
    original_tokens: int
    processed_tokens: int
    exceeds_limit: bool
    estimation_only: bool = False
    selector: str | None = None
    recommendations: list[str] = field(default_factory=list)
    chunks_count: int | None = None
    compression_ratio: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "originalTokens": self.original_tokens,
            "processedTokens": self.processed_tokens,
            "exceedsLimit": self.exceeds_limit,
            "estimationOnly": self.estimation_only,
            "recommendations": list(self.recommendations),
        }
        if self.selector:
            payload["selector"] = self.selector
        if self.chunks_count is not None:
            payload["chunksCount"] = self.chunks_count
        if self.compression_ratio is not None:
            payload["compressionRatio"] = round(self.compression_ratio, 4)
        return payload


@dataclass
class ContentResponse:
    content: str | list[ContentChunk]
    strategy: ContentStrategy
    metadata: ContentMetadata
    content_type: ContentType = "html"
    workflow_guidance: str | None = None

    @property
    def is_chunked(self) -> bool:
        return isinstance(self.content, list)

    def to_dict(self) -> dict[str, Any]:
        content: Any = self.content
        if isinstance(content, list):
            content = [chunk.to_dict() for chunk in content]
        payload: dict[str, Any] = {
            "content": content,
            "strategy": self.strategy.value,
            "contentType": self.content_type,
            "metadata": self.metadata.to_dict(),
        }
        if self.workflow_guidance:
            payload["workflowGuidance"] = self.workflow_guidance
        return payload


class ContentStrategyEngine:
    def __init__(self, tokens: TokenManager, gate: WorkflowGate) -> None:
        self.tokens = tokens
        self.gate = gate

    @property
    def budget(self) -> TokenBudget:
        return self.tokens.budget

    # Request processing

    def process_content_request(self, page: PageProvider, request: ContentRequest) -> ContentResponse:
        if self.gate.state == WorkflowState.INITIAL:
            raise PreconditionError(
                "Cannot retrieve content before browser initialization and page navigation. "
                "Use browser_init and navigate first."
            )

        mode = request.resolved_mode()
        blocking = request.resolved_blocking()
        blocking_enabled = False
        if blocking != "disabled" and not request.selector and not request.estimate_only:
            blocking_enabled = self.enable_resource_blocking(page, blocking)

        try:
            return self._process(page, request, mode)
        finally:
            if blocking_enabled:
                self.disable_resource_blocking(page)

    def _process(self, page: PageProvider, request: ContentRequest, mode: str) -> ContentResponse:
        final_type = request.type
        if final_type is None or request.estimate_only:
            estimate = self.estimate(page, request.selector, mode)
            if request.estimate_only:
                return ContentResponse(
                    content="",
                    strategy=estimate.strategy,
                    content_type=final_type or estimate.recommended_type,
                    metadata=ContentMetadata(
                        original_tokens=estimate.html_tokens,
                        processed_tokens=estimate.text_tokens if final_type == "text" else estimate.html_tokens,
                        exceeds_limit=estimate.requires_chunking,
                        estimation_only=True,
                        selector=request.selector,
                        recommendations=self.estimate_recommendations(estimate, request),
                    ),
                )
            final_type = estimate.recommended_type
            strategy = estimate.strategy
        else:
            strategy = ContentStrategy.FULL_HTML if final_type == "html" else ContentStrategy.FULL_TEXT

        raw = self.retrieve_content(page, final_type, request.selector, mode)
        processed = self.tokens.process_content(raw, final_type, strategy)
        meta = processed.metadata

        recommendations = self.processing_recommendations(processed, request)
        if mode == "full" and not request.selector:
            size = self.quick_page_size_check(page)
            if size.likely_large:
                recommendations.append(
                    f"Page looks very large (~{size.estimated_tokens} tokens); "
                    'contentMode="main" or contentMode="summary" will be much cheaper'
                )

        return ContentResponse(
            content=processed.content,
            strategy=processed.strategy,
            content_type="text" if processed.strategy == ContentStrategy.FALLBACK_TEXT else final_type,
            metadata=ContentMetadata(
                original_tokens=meta.original_tokens,
                processed_tokens=meta.processed_tokens,
                exceeds_limit=meta.original_tokens > self.budget.exceeds_limit_report,
                selector=request.selector,
                recommendations=recommendations,
                chunks_count=meta.chunks,
                compression_ratio=meta.compression_ratio,
            ),
            workflow_guidance=self.workflow_guidance(processed),
        )

    # Estimation

    def estimate(self, page: PageProvider, selector: str | None = None, mode: str = "full") -> PreflightEstimate:
        """Pre-flight size estimate; never raises, falls back to a conservative guess."""
        warnings: list[str] = []
        try:
            if selector:
                html, text = self._sample_element(page, selector)
            else:
                html, text = self.content_by_mode(page, mode)
            html_tokens = self.tokens.count_tokens(html, "html")
            text_tokens = self.tokens.count_tokens(text, "text")

            if not selector and min(html_tokens, text_tokens) > self.budget.very_large_threshold:
                logger.warning(
                    "emergency_extraction mode=%s tokens=%s threshold=%s",
                    mode,
                    max(html_tokens, text_tokens),
                    self.budget.very_large_threshold,
                )
                emergency = self.extract_emergency_content(page)
                html_tokens = self.tokens.count_tokens(emergency["html"], "html")
                text_tokens = self.tokens.count_tokens(emergency["text"], "text")
                warnings.append("Applied emergency content filtering due to large page size")
        except Exception as exc:  # noqa: BLE001
            logger.warning("estimation_failed selector=%s mode=%s error=%s", selector, mode, exc)
            return PreflightEstimate(
                html_tokens=30000,
                text_tokens=15000,
                recommended_type="text",
                requires_chunking=True,
                strategy=ContentStrategy.CHUNKED_TEXT,
                warnings=["Could not estimate content size, using conservative text strategy"],
            )
        return self._decide(html_tokens, text_tokens, warnings)

    def _decide(self, html_tokens: int, text_tokens: int, warnings: list[str]) -> PreflightEstimate:
        safe = self.budget.safe_limit
        if html_tokens <= safe:
            return PreflightEstimate(html_tokens, text_tokens, "html", False, ContentStrategy.FULL_HTML, warnings)
        if text_tokens <= safe:
            warnings.append("HTML content is large, recommending text extraction for better performance")
            return PreflightEstimate(html_tokens, text_tokens, "text", False, ContentStrategy.FULL_TEXT, warnings)

        ratio = text_tokens / html_tokens if html_tokens else 1.0
        chunks = math.ceil(max(html_tokens, text_tokens) / self.budget.default_chunk_size)
        warnings.append(f"Content exceeds MCP token limits. Estimated {chunks} chunks needed.")
        if ratio < 0.6:
            return PreflightEstimate(html_tokens, text_tokens, "text", True, ContentStrategy.CHUNKED_TEXT, warnings)
        return PreflightEstimate(html_tokens, text_tokens, "html", True, ContentStrategy.CHUNKED_HTML, warnings)

    def _sample_element(self, page: PageProvider, selector: str) -> tuple[str, str]:
        element = page.query_selector(selector)
        if element is None:
            raise EstimationFailure(f"Element not found for sampling: {selector}")
        sample = element.evaluate(js_snippets.ELEMENT_SAMPLE_ON_ELEMENT, ESTIMATION_SAMPLE_SIZE) or {}
        return (
            _scale_sample(str(sample.get("html") or ""), int(sample.get("htmlLength") or 0)),
            _scale_sample(str(sample.get("text") or ""), int(sample.get("textLength") or 0)),
        )

    def content_by_mode(self, page: PageProvider, mode: str) -> tuple[str, str]:
        """Real HTML and text renderings for a whole-page mode."""
        if mode == "summary":
            return self.extract_summary_content(page, "html"), self.extract_summary_content(page, "text")
        if mode == "main":
            return self.extract_main_content(page, "html"), self.extract_main_content(page, "text")
        full = page.evaluate(js_snippets.FULL_CONTENT) or {}
        return str(full.get("html") or ""), str(full.get("text") or "")

    def quick_page_size_check(self, page: PageProvider) -> PageSizeCheck:
        try:
            info = page.evaluate(js_snippets.PAGE_SIZE_INFO) or {}
            details = {key: int(info.get(key) or 0) for key in _SIZE_KEYS}
        except Exception as exc:  # noqa: BLE001
            logger.warning("page_size_check_failed error=%s", exc)
            return PageSizeCheck(False, 0)

        estimated = int(min(details["htmlLength"], details["textLength"] * 2) / 4)
        likely_large = (
            estimated > 20000
            or details["htmlLength"] > 100000
            or details["scripts"] > 50
            or details["svgs"] > 20
            or details["codeBlocks"] > 50
        )
        return PageSizeCheck(likely_large, estimated, details)

    # Extraction

    def extract_main_content(self, page: PageProvider, content_type: str) -> str:
        result = page.evaluate(
            js_snippets.MAIN_CONTENT, list(MAIN_CONTENT_SELECTORS), list(EXCLUDE_SELECTORS), content_type
        )
        return str(result or "")

    def extract_summary_content(self, page: PageProvider, content_type: str) -> str:
        return str(page.evaluate(js_snippets.SUMMARY_CONTENT, content_type) or "")

    def extract_emergency_content(self, page: PageProvider) -> dict[str, str]:
        result = page.evaluate(js_snippets.EMERGENCY_CONTENT) or {}
        return {"html": str(result.get("html") or ""), "text": str(result.get("text") or "")}

    def retrieve_content(self, page: PageProvider, content_type: str, selector: str | None, mode: str) -> str:
        if selector:
            element = page.query_selector(selector)
            if element is None:
                raise ElementNotFound(
                    "get_content",
                    selector,
                    suggestion="Use 'find_selector' to locate the element, or omit 'selector' to read the whole page",
                )
            return str(element.evaluate(js_snippets.ELEMENT_CONTENT_ON_ELEMENT, content_type) or "")
        if mode == "summary":
            return self.extract_summary_content(page, content_type)
        if mode == "main":
            return self.extract_main_content(page, content_type)
        if content_type == "text":
            return str(page.evaluate(js_snippets.BODY_TEXT) or "")
        return page.content()

    # Resource blocking

    def enable_resource_blocking(self, page: PageProvider, level: str) -> bool:
        """Turn on request interception; False (logged) when it could not be set up."""
        try:
            _install_blocking(page, level)
        except ResourceBlockingFailure as exc:
            logger.warning("resource_blocking_setup_failed level=%s error=%s", level, exc)
            self.disable_resource_blocking(page)
            return False
        logger.info("resource_blocking_enabled level=%s", level)
        return True

    def disable_resource_blocking(self, page: PageProvider) -> None:
        try:
            page.remove_request_listeners()
            page.set_request_interception(False)
        except Exception as exc:  # noqa: BLE001
            logger.warning("resource_blocking_teardown_failed error=%s", exc)

    # Final size gate

    def enforce_mcp_limits(
        self, content: str | list[ContentChunk], content_type: str
    ) -> tuple[str | list[ContentChunk], list[str]]:
        """Make outgoing content fit the MCP budget; returns (content, notes).

        Strings are emergency-truncated; chunk lists lose trailing chunks first and
        the last remaining chunk is truncated if it is still too large. Raises
        ContentTooLarge when nothing brings the payload back under the maximum.
        """
        notes: list[str] = []
        verdict = self.tokens.strict_validate_for_mcp(content, content_type)
        if verdict.action == "allow":
            if verdict.message:
                notes.append(verdict.message)
            return content, notes

        logger.warning("mcp_size_gate action=%s tokens=%s", verdict.action, verdict.token_count)
        if isinstance(content, list):
            kept = list(content)
            while len(kept) > 1 and not self.tokens.strict_validate_for_mcp(kept, content_type).is_valid:
                kept.pop()
            if len(kept) < len(content):
                notes.append(
                    f"Dropped {len(content) - len(kept)} trailing chunk(s) to stay within MCP token limits"
                )
            last = kept[-1]
            if not self.tokens.strict_validate_for_mcp(kept, content_type).is_valid:
                text = self.tokens.emergency_truncate(last.content, content_type)
                kept[-1] = replace(last, content=text, token_count=self.tokens.count_tokens(text, content_type))
                notes.append("Chunk truncated to stay within MCP token limits")
            result: str | list[ContentChunk] = kept
        else:
            result = self.tokens.emergency_truncate(content, content_type)
            notes.append("Content truncated to stay within MCP token limits")

        final = self.tokens.strict_validate_for_mcp(result, content_type)
        if final.action == "reject":
            raise ContentTooLarge(final.token_count, self.budget.max_tokens, message=final.message or "")
        return result, notes

    # Recommendations and guidance

    def estimate_recommendations(self, estimate: PreflightEstimate, request: ContentRequest) -> list[str]:
        out: list[str] = []
        if estimate.requires_chunking:
            out.append("Content exceeds MCP token limits and will require chunking")
        if estimate.text_tokens < estimate.html_tokens * 0.7:
            out.append('Consider using type="text" for significantly smaller token count')
        if request.chunking_preference == "avoid":
            out.append("Use a more specific selector to reduce content size")
            out.append('Try contentMode="main" to extract only main content areas')
            out.append('Try contentMode="summary" for page overview with key headings')
        if not request.selector and request.content_mode in (None, "full"):
            if estimate.html_tokens > 15000:
                out.append('Try contentMode="main" to automatically extract main content and reduce tokens by ~70%')
            if estimate.html_tokens > 30000:
                out.append('Try contentMode="summary" for page overview (headings, key paragraphs)')
        if estimate.html_tokens > 50000:
            out.append("Content is very large - consider progressive loading with specific selectors")
        out.extend(estimate.warnings)
        return out

    def processing_recommendations(self, processed: ProcessedContent, request: ContentRequest) -> list[str]:
        out: list[str] = []
        meta = processed.metadata
        if meta.chunks and meta.chunks > CHUNK_WARNING_THRESHOLD:
            out.append(f"Content was split into {meta.chunks} chunks - consider using more specific selectors")
        if processed.strategy == ContentStrategy.FALLBACK_TEXT and request.type == "html":
            out.append("Automatically switched to text content due to token limits")
        if meta.compression_ratio is not None and meta.compression_ratio < 0.5:
            out.append(
                'Text extraction achieved significant size reduction - consider using type="text" for future requests'
            )
        return out

    def workflow_guidance(self, processed: ProcessedContent) -> str:
        # Runs inside a get_content call that is about to move the gate to CONTENT_ANALYZED.
        lines = [
            "Content analyzed successfully! You can now use:",
            "  • find_selector to locate elements by text content",
            "  • click, type, and other interaction tools",
            "  • Additional get_content calls for specific elements",
            '  • Different contentMode options: "main", "summary", "full"',
        ]
        if isinstance(processed.content, list):
            total = len(processed.content)
            lines += [
                "",
                f"Content split into {total} chunks for MCP compliance",
                f"  • Each chunk respects the {self.budget.max_tokens:,} token limit",
                f"  • Request the others with chunkIndex=1..{total - 1}" if total > 1 else "  • Single chunk returned",
            ]
        if processed.strategy == ContentStrategy.FALLBACK_TEXT:
            lines += ["", "Automatically optimized to text content for better performance"]
        return "\n".join(lines)

    def strategy_summary(self, page: PageProvider, selector: str | None = None, mode: str = "main") -> str:
        estimate = self.estimate(page, selector, mode)
        ctx = self.gate.context
        return "\n".join(
            [
                "Content Strategy Summary:",
                f"- Workflow State: {ctx.current_state.value}",
                f"- Content Analyzed: {str(ctx.content_analyzed).lower()}",
                f"- Estimated HTML Tokens: {estimate.html_tokens}",
                f"- Estimated Text Tokens: {estimate.text_tokens}",
                f"- Recommended Type: {estimate.recommended_type}",
                f"- Strategy: {estimate.strategy.value}",
                f"- Requires Chunking: {str(estimate.requires_chunking).lower()}",
                f"- Warnings: {', '.join(estimate.warnings) if estimate.warnings else 'None'}",
            ]
        )


def _install_blocking(page: PageProvider, level: str) -> None:
    def _handle(request: InterceptedRequest) -> None:
        if should_block(level, request.resource_type, request.url):
            request.abort()
        else:
            request.continue_()

    try:
        page.set_request_interception(True)
        page.on_request(_handle)
    except Exception as exc:
        raise ResourceBlockingFailure(str(exc)) from exc


def _scale_sample(sample: str, actual_length: int) -> str:
    """Repeat a leading sample up to the element's real length."""
    if not sample or actual_length <= 0:
        return ""
    repeats = math.ceil(actual_length / len(sample))
    return (sample * repeats)[:actual_length]
