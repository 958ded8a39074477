"""
Filename and folder suggestions for attachments via OpenAI
"""
import json
from typing import List, Optional

from loguru import logger
from openai import OpenAI

from config import settings
from models import AttachmentInfo, EmailContext, FileSuggestion

FALLBACK_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.5
BODY_PREVIEW_CHARS = 500

SYSTEM_PROMPT = (
    "You organise email attachments into files and folders. For every attachment "
    "suggest a descriptive filename and a folder path such as /Projects/Client/Type/Year/. "
    "Use ISO dates (YYYY-MM-DD) where relevant and avoid characters that are unsafe in filenames. "
    'Reply with a JSON object {"suggestions": [{"suggested_filename": str, '
    '"suggested_path": str, "confidence": number between 0 and 1}]} '
    "with one entry per attachment, in the order given."
)


def default_path(email: EmailContext) -> str:
    return f"/Downloads/{email.date.year}/"


def fallback_suggestions(email: EmailContext, attachments: List[AttachmentInfo]) -> List[FileSuggestion]:
    return [
        FileSuggestion(
            original_filename=att.filename,
            suggested_filename=att.filename,
            suggested_path=default_path(email),
            confidence=FALLBACK_CONFIDENCE
        )
        for att in attachments
    ]


def _confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    return min(max(confidence, 0.0), 1.0)


class SuggestionGenerator:
    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None,
                 temperature: Optional[float] = None):
        self.model = model or settings.openai_model
        self.temperature = settings.openai_temperature if temperature is None else temperature
        self.client = client
        if self.client is None and settings.openai_api_key:
            self.client = OpenAI(api_key=settings.openai_api_key, timeout=settings.openai_timeout_seconds)

    def _user_prompt(self, email: EmailContext, attachments: List[AttachmentInfo]) -> str:
        preview = (email.body or "")[:BODY_PREVIEW_CHARS] or "No body"
        lines = "\n".join(
            f"{i}. {att.filename} ({att.content_type})" for i, att in enumerate(attachments, start=1)
        )
        return (
            f"Email Details:\n"
            f"From: {email.sender}\n"
            f"Subject: {email.subject}\n"
            f"Date: {email.date.date().isoformat()}\n"
            f"Body Preview: {preview}\n\n"
            f"Attachments:\n{lines}"
        )

    def _request(self, email: EmailContext, attachments: List[AttachmentInfo]) -> list:
        completion = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self._user_prompt(email, attachments)}
            ],
            temperature=self.temperature,
            response_format={"type": "json_object"}
        )
        response = json.loads(completion.choices[0].message.content or "{}")
        suggestions = response.get("suggestions") if isinstance(response, dict) else None
        return suggestions if isinstance(suggestions, list) else []

    def generate(self, email: EmailContext, attachments: List[AttachmentInfo]) -> List[FileSuggestion]:
        """One suggestion per attachment, in input order"""
        if not attachments:
            return []

        if self.client is None:
            logger.info("No OpenAI client configured, using default suggestions")
            return fallback_suggestions(email, attachments)

        try:
            raw = self._request(email, attachments)
        except Exception as e:
            logger.error(f"Error generating AI suggestions: {e}")
            return fallback_suggestions(email, attachments)

        results = []
        for index, att in enumerate(attachments):
            suggestion = raw[index] if index < len(raw) and isinstance(raw[index], dict) else {}
            results.append(FileSuggestion(
                original_filename=att.filename,
                suggested_filename=str(suggestion.get("suggested_filename") or att.filename),
                suggested_path=str(suggestion.get("suggested_path") or default_path(email)),
                confidence=_confidence(suggestion.get("confidence", DEFAULT_CONFIDENCE))
            ))

        logger.info(f"Generated {len(results)} suggestion(s) with {self.model}")
        return results
