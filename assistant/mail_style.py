"""
assistant/mail_style.py

Writing-style analysis and draft generation for outgoing mail.

- search_emails: previous messages sent to a recipient (paginated, fetched in batches of 5)
- extract_email_content: plain text of a Gmail message, nested multiparts included
- analyze_email_context: StyleProfile inferred by the model from real mail, else a domain heuristic
- check_context_completeness: does the stated purpose leave people/plans/meetings unexplained?
- generate_humanized_email / generate_natural_subject: the draft itself

Cache keys: 'emails_<recipient>_<n>' (5 min), 'style_<recipient>' (1 h, half that for heuristics).
"""

import base64
import binascii
import logging
import re
from concurrent.futures import ThreadPoolExecutor

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from assistant.errors import BackendError, GatewayError, ParseError, ValidationError
from assistant.postprocess import clean_line, extract_json_object, split_subject_body
from assistant.prompts import context_check_prompt, humanized_email_prompt, style_analysis_prompt, subject_prompt
from util.fallback import FallbackChain, Strategy
from util.retry import RetryPolicy


logger = logging.getLogger(__name__)

STYLE_TTL = 60 * 60
EMAILS_TTL = 5 * 60
ANALYSIS_SAMPLE = 15
BATCH_SIZE = 5
MAX_EMAIL_CHARS = 10_000
MAX_COMBINED_CHARS = 8_000

PERSONAL_PROVIDERS = ("gmail", "googlemail", "yahoo", "hotmail", "outlook.com", "live.com",
                      "icloud", "me.com", "aol", "proton", "protonmail", "gmx")

MISSING_CONTEXT_PATTERNS = [
    (re.compile(r"\b(he|she|they|him|her|them)\b", re.IGNORECASE), "who this person is"),
    (re.compile(r"\b(the plan|our plan)\b", re.IGNORECASE), "which plan specifically"),
    (re.compile(r"\b(the meeting|our meeting)\b", re.IGNORECASE), "which meeting"),
    (re.compile(r"\b(the teacher|a teacher)\b", re.IGNORECASE), "which teacher"),
]


class StyleContext(BaseModel):
    previousTopics: list[str] | None = None
    ongoingContext: str | None = None
    typicalPurpose: str | None = None
    commonTerms: list[str] | None = None
    relationshipDynamics: str | None = None
    insideReferences: list[str] | None = None
    upcomingEvents: list[str] | None = None


class StyleProfile(BaseModel):
    relationship: str = "unknown"
    tone: str = "professional"
    greeting: str = "Hello,"
    closing: str = "Best regards,"
    style: str = "concise and clear"
    context: StyleContext = Field(default_factory=StyleContext)


class ContextVerdict(BaseModel):
    hasAllContext: bool = True
    missingInfo: str | None = None
    suggestedApproach: str | None = None


DEFAULT_PROFILE = StyleProfile(
    context=StyleContext(
        previousTopics=["general communication"],
        ongoingContext="No specific context known",
        typicalPurpose="general communication",
        commonTerms=[],
        relationshipDynamics="professional relationship",
    )
)

DOMAIN_PROFILES = {
    "personal": StyleProfile(
        relationship="personal", tone="friendly", greeting="Hi there,", closing="Best,",
        style="casual and conversational",
        context=StyleContext(
            previousTopics=["general communication"], ongoingContext="No specific context known",
            typicalPurpose="personal communication", commonTerms=["best", "thanks", "appreciate"],
            relationshipDynamics="personal relationship",
        ),
    ),
    "academic": StyleProfile(
        relationship="academic", tone="professional but approachable", greeting="Hello,",
        closing="Best regards,", style="clear and structured",
        context=StyleContext(
            previousTopics=["academic matters"], ongoingContext="Academic or educational context",
            typicalPurpose="academic communication", commonTerms=["study", "research", "academic"],
            relationshipDynamics="academic relationship",
        ),
    ),
    "government": StyleProfile(
        relationship="government", tone="formal", greeting="Dear Sir/Madam,", closing="Respectfully,",
        style="precise and formal",
        context=StyleContext(
            previousTopics=["official matters"], ongoingContext="Official or governmental context",
            typicalPurpose="formal communication", commonTerms=["official", "policy", "regarding"],
            relationshipDynamics="official relationship",
        ),
    ),
    "business": StyleProfile(
        relationship="business", tone="professional", greeting="Hello,", closing="Kind regards,",
        style="concise and clear",
        context=StyleContext(
            previousTopics=["business matters"], ongoingContext="Professional business context",
            typicalPurpose="business communication", commonTerms=["regarding", "business", "opportunity"],
            relationshipDynamics="professional business relationship",
        ),
    ),
}


def classify_domain(recipient) -> str:
    """personal / academic / government / business from the address's domain."""
    _, sep, domain = (recipient or "").rpartition("@")
    domain = domain.strip().lower()
    if not sep or "." not in domain:
        raise ValidationError(f"not an email address: {recipient!r}")
    labels = domain.split(".")
    if any(p in labels or domain == p or domain.endswith("." + p) for p in PERSONAL_PROVIDERS):
        return "personal"
    if "edu" in labels or "ac" in labels[:-1]:
        return "academic"
    if "gov" in labels or "mil" in labels:
        return "government"
    return "business"


def _decode_part(data):
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_email_content(message) -> str:
    """Top-level body plus every text/plain part, capped per message."""
    payload = (message or {}).get("payload") or {}
    chunks = []

    def take(data):
        try:
            chunks.append(_decode_part(data))
        except (binascii.Error, ValueError):
            logger.debug("Skipping undecodable message part")

    top = (payload.get("body") or {}).get("data")
    if top:
        take(top)
    stack = list(payload.get("parts") or [])
    while stack:
        part = stack.pop(0)
        data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == "text/plain" and data:
            take(data)
        stack.extend(part.get("parts") or [])
    return "".join(chunks)[:MAX_EMAIL_CHARS]


class MailStyleAnalyzer:
    def __init__(self, backend, gateway, cache, retry=None, style_ttl=STYLE_TTL, emails_ttl=EMAILS_TTL):
        self.backend = backend
        self.gateway = gateway
        self.cache = cache
        self.retry = retry or RetryPolicy(max_attempts=3, base_delay=1.0, factor=2.0)
        self.style_ttl = style_ttl
        self.emails_ttl = emails_ttl
        self._completeness = FallbackChain(
            "context_completeness",
            [Strategy("gateway", self._llm_completeness), Strategy("patterns", pattern_completeness)],
            default=ContextVerdict,
        )
        self._subject = FallbackChain(
            "natural_subject",
            [Strategy("gateway", self._llm_subject)],
            default=None,
        )

    # ---- previous mail ----

    def search_emails(self, recipient, max_results=ANALYSIS_SAMPLE):
        key = f"emails_{recipient}_{max_results}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Using cached email data for %s", recipient)
            return cached

        refs = []
        token = None
        try:
            while len(refs) < max_results:
                page = self.backend.list_messages(
                    f"to:{recipient}", page_token=token, max_results=min(max_results - len(refs), 100)
                )
                batch = page.get("messages") or []
                refs.extend(batch)
                token = page.get("nextPageToken")
                if not token or not batch:
                    break
        except BackendError as exc:
            logger.warning("Searching mail to %s failed: %s", recipient, exc)
            return []

        ids = [ref["id"] for ref in refs[:max_results] if ref.get("id")]
        emails = []
        with ThreadPoolExecutor(max_workers=BATCH_SIZE) as pool:
            for i in range(0, len(ids), BATCH_SIZE):
                futures = [pool.submit(self.backend.get_message, mid) for mid in ids[i:i + BATCH_SIZE]]
                for future in futures:
                    try:
                        emails.append(future.result())
                    except BackendError as exc:
                        logger.info("Skipping message that failed to load: %s", exc)
        logger.info("Loaded %d of %d previous emails to %s", len(emails), len(ids), recipient)
        self.cache.set(key, emails, self.emails_ttl)
        return emails

    # ---- style ----

    def analyze_email_context(self, recipient) -> StyleProfile:
        key = f"style_{recipient}"
        stale = self.cache.peek(key)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        texts = [t for t in (extract_email_content(m) for m in self.search_emails(recipient)) if t.strip()]
        if texts:
            combined = "\n\n---\n\n".join(texts)
            if len(combined) > MAX_COMBINED_CHARS:
                combined = combined[:MAX_COMBINED_CHARS] + f"\n\n[Truncated - {len(texts)} total emails]"
            try:
                profile = self.retry.call(
                    self._infer_profile, recipient, combined,
                    retry_on=(GatewayError, ParseError), label="style analysis",
                )
            except (GatewayError, ParseError):
                if stale is not None:
                    logger.info("Style analysis failed; using expired profile for %s", recipient)
                    return stale.value
            else:
                self.cache.set(key, profile, self.style_ttl)
                return profile

        try:
            category = classify_domain(recipient)
        except ValidationError as exc:
            logger.warning("No style profile for %s: %s", recipient, exc)
            return stale.value if stale is not None else DEFAULT_PROFILE.model_copy(deep=True)
        profile = DOMAIN_PROFILES[category].model_copy(deep=True)
        self.cache.set(key, profile, self.style_ttl / 2)
        return profile

    def _infer_profile(self, recipient, emails_text):
        raw = extract_json_object(self.gateway.generate(style_analysis_prompt(recipient, emails_text)))
        try:
            return StyleProfile.model_validate(raw)
        except PydanticValidationError as exc:
            raise ParseError(f"style profile did not validate: {exc}") from exc

    # ---- purpose / draft ----

    def check_context_completeness(self, purpose) -> ContextVerdict:
        return self._completeness.run(purpose)

    def _llm_completeness(self, purpose):
        raw = extract_json_object(self.gateway.generate(context_check_prompt(purpose)))
        try:
            verdict = ContextVerdict.model_validate(raw)
        except PydanticValidationError as exc:
            raise ParseError(f"context verdict did not validate: {exc}") from exc
        if verdict.missingInfo and verdict.missingInfo.strip().lower() in {"null", "none", ""}:
            verdict.missingInfo = None
        return verdict

    def generate_humanized_email(self, recipient, purpose, profile, missing_info=None):
        """Return (subject, body). Raises GatewayError once retries are exhausted."""
        prompt = humanized_email_prompt(recipient, purpose, profile, missing_info)
        text = self.retry.call(self.gateway.generate, prompt, retry_on=(GatewayError,), label="email draft")
        subject, body = split_subject_body(text)
        if not body:
            raise GatewayError("Model returned a draft without a body")
        if not subject:
            subject = self.generate_natural_subject(purpose)
        return subject, body

    def generate_natural_subject(self, purpose):
        subject = self._subject.run(purpose)
        if subject:
            return subject
        first_words = " ".join((purpose or "").split()[:3])
        return f"Quick update - {first_words}..."

    def _llm_subject(self, purpose):
        line = clean_line(self.gateway.generate(subject_prompt(purpose)))
        line = re.sub(r"^(?:subject|re)\s*:\s*", "", line, flags=re.IGNORECASE).strip()
        if not line:
            raise ParseError("empty subject line")
        return line


def pattern_completeness(purpose) -> ContextVerdict:
    for pattern, issue in MISSING_CONTEXT_PATTERNS:
        if pattern.search(purpose or ""):
            return ContextVerdict(
                hasAllContext=False,
                missingInfo=issue,
                suggestedApproach="Write naturally and be general where specific details aren't available",
            )
    return ContextVerdict(hasAllContext=True, suggestedApproach="Proceed with all available context")
