"""OpenAI-backed summaries and recommendations for research evidence."""

from __future__ import annotations

import logging
import os

from openai import OpenAI

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.2"))
MAX_COMPLETION_TOKENS = 1500
MAX_ATTEMPTS = 2

LOGGER = logging.getLogger(__name__)

_SUMMARY_SYSTEM_PROMPT = """You are an expert physiotherapist and researcher. Summarize research evidence into clear, actionable clinical insights. Focus on:
- Key findings and their clinical significance
- Evidence quality and level
- Clinical implications and practical applications
- Limitations and considerations
Keep summaries concise but comprehensive for busy clinicians."""

_RECOMMENDATIONS_SYSTEM_PROMPT = """You are an expert physiotherapist providing evidence-based treatment recommendations. Generate specific, practical recommendations based on research evidence. Include:
- Specific interventions and techniques
- Dosage and frequency recommendations
- Expected outcomes and timeframes
- Contraindications and precautions
- Evidence level supporting each recommendation"""

_QUESTIONS_SYSTEM_PROMPT = """You are an expert physiotherapist identifying important clinical questions. Generate relevant clinical questions that arise from research evidence. Focus on:
- Gaps in current evidence
- Areas needing further research
- Practical implementation questions
- Patient-specific considerations"""

# request_type -> (system prompt, user prompt template, default condition)
_PROMPTS: dict[str, tuple[str, str, str]] = {
    "summary": (
        _SUMMARY_SYSTEM_PROMPT,
        "Summarize this research evidence for {condition}:\n\n{text}",
        "physiotherapy practice",
    ),
    "recommendations": (
        _RECOMMENDATIONS_SYSTEM_PROMPT,
        "Based on this evidence for {condition}, provide specific treatment recommendations:\n\n{text}",
        "the condition",
    ),
    "clinical_questions": (
        _QUESTIONS_SYSTEM_PROMPT,
        "Based on this evidence for {condition}, what key clinical questions should practitioners consider:\n\n{text}",
        "the condition",
    ),
}

REQUEST_TYPES: frozenset[str] = frozenset(_PROMPTS)


def summarize_evidence(
    evidence_text: str,
    condition: str | None = None,
    request_type: str = "summary",
) -> str:
    """Return an AI-written summary, recommendation list, or question list.

    Raises ValueError for an empty text or unknown request_type, and
    RuntimeError if the API key is missing or both attempts fail.
    """
    if not isinstance(evidence_text, str) or not evidence_text.strip():
        raise ValueError("Evidence text is required and must be a non-empty string")
    if request_type not in _PROMPTS:
        raise ValueError(f"Unknown request_type={request_type!r}; expected one of {sorted(REQUEST_TYPES)}")

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is required")

    system_prompt, template, default_condition = _PROMPTS[request_type]
    user_prompt = template.format(condition=condition or default_condition, text=evidence_text)

    LOGGER.info("Requesting %s for condition=%s", request_type, condition)
    client = OpenAI(api_key=api_key)
    last_error: Exception | None = None

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            response = client.chat.completions.create(
                model=OPENAI_MODEL,
                temperature=OPENAI_TEMPERATURE,
                max_completion_tokens=MAX_COMPLETION_TOKENS,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
            content = response.choices[0].message.content
            if not content or not content.strip():
                raise RuntimeError("OpenAI returned an empty response")
            LOGGER.info("OpenAI %s succeeded on attempt %s", request_type, attempt)
            return content.strip()
        except Exception as exc:
            last_error = exc
            LOGGER.warning(
                "OpenAI %s failed on attempt %s/%s: %s",
                request_type,
                attempt,
                MAX_ATTEMPTS,
                exc,
            )

    raise RuntimeError(f"Evidence {request_type} failed: {last_error}")
