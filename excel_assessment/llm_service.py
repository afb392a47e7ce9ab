"""LLM service: schema-constrained JSON calls to the generative model."""
import httpx
import json
import re
from typing import Any, Dict, List, Optional, Type, TypeVar
from pydantic import BaseModel, ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import structlog
from excel_assessment.config import settings

logger = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)


class LLMServiceError(Exception):
    """Raised when the model call fails or returns unusable output."""


# Response models for type safety
class ConceptualEvaluation(BaseModel):
    score: float
    reasoning: str
    strengths: List[str]
    improvements: List[str]

class ExplanationEvaluation(BaseModel):
    score: float
    clarity: float
    accuracy: float
    completeness: float
    feedback: str

class InterviewReply(BaseModel):
    response: str
    next_question: Optional[str] = None
    should_continue: bool
    hints: List[str] = []

class ReportData(BaseModel):
    strengths: List[str]
    improvements: List[str]
    recommendations: List[str]


# Declared response schemas (JSON Schema subset understood by both providers)
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

CONCEPTUAL_SCHEMA = {
    "type": "object",
    "properties": {
        "score": {"type": "number"},
        "reasoning": {"type": "string"},
        "strengths": _STRING_LIST,
        "improvements": _STRING_LIST,
    },
    "required": ["score", "reasoning", "strengths", "improvements"],
}

EXPLANATION_SCHEMA = {
    "type": "object",
    "properties": {
        "score": {"type": "number"},
        "clarity": {"type": "number"},
        "accuracy": {"type": "number"},
        "completeness": {"type": "number"},
        "feedback": {"type": "string"},
    },
    "required": ["score", "clarity", "accuracy", "completeness", "feedback"],
}

REPLY_SCHEMA = {
    "type": "object",
    "properties": {
        "response": {"type": "string"},
        "next_question": {"type": "string"},
        "should_continue": {"type": "boolean"},
        "hints": _STRING_LIST,
    },
    "required": ["response", "should_continue"],
}

REPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "strengths": _STRING_LIST,
        "improvements": _STRING_LIST,
        "recommendations": _STRING_LIST,
    },
    "required": ["strengths", "improvements", "recommendations"],
}


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Gemini expects upper-case OpenAPI type names."""
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type":
            converted[key] = value.upper()
        elif key == "properties":
            converted[key] = {name: to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items":
            converted[key] = to_gemini_schema(value)
        else:
            converted[key] = value
    return converted


class LLMService:
    def __init__(
        self,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider or settings.LLM_PROVIDER
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.timeout = settings.LLM_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(settings.LLM_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        reraise=True,
    )
    async def _gemini_generate(
        self, system_prompt: str, contents: str, schema: Dict[str, Any], model: str
    ) -> str:
        url = f"{settings.GEMINI_API_BASE}/models/{model}:generateContent"
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": contents}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": to_gemini_schema(schema),
            },
        }
        async with self._client() as client:
            logger.info("Making LLM request", provider="gemini", model=model, prompt_length=len(system_prompt))
            response = await client.post(url, json=payload, headers={"x-goog-api-key": self.api_key or ""})
            response.raise_for_status()
            data = response.json()

        parts = (data.get("candidates") or [{}])[0].get("content", {}).get("parts") or []
        content = "".join(part.get("text", "") for part in parts).strip()
        logger.info("LLM response received", response_length=len(content))
        return content

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(settings.LLM_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        reraise=True,
    )
    async def _ollama_generate(
        self, system_prompt: str, contents: str, schema: Dict[str, Any], model: str
    ) -> str:
        payload = {
            "model": model,
            "system": system_prompt,
            "prompt": contents,
            "format": schema,
            "options": {"temperature": 0.2},
            "stream": False,
        }
        async with self._client() as client:
            logger.info("Making LLM request", provider="ollama", model=model, prompt_length=len(system_prompt))
            response = await client.post(settings.OLLAMA_API_URL, json=payload)
            response.raise_for_status()
            data = response.json()

        content = (data.get("response") or "").strip()
        logger.info("LLM response received", response_length=len(content))
        return content

    def _extract_json_from_response(self, content: str) -> Optional[Dict]:
        """Extract a JSON object from model output, tolerating code fences."""
        try:
            return json.loads(content)
        except ValueError:
            pass
        if "```json" in content:
            start = content.find("```json") + 7
            end = content.find("```", start)
            try:
                return json.loads(content[start:end].strip())
            except ValueError:
                pass
        match = re.search(r"\{.*\}", content, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except ValueError:
                pass
        logger.warning("Could not extract JSON from LLM response", content_preview=content[:200])
        return None

    async def _generate_json(
        self,
        system_prompt: str,
        contents: str,
        schema: Dict[str, Any],
        response_model: Type[T],
        fast: bool = False,
    ) -> T:
        if self.provider == "ollama":
            content = await self._ollama_generate(system_prompt, contents, schema, settings.OLLAMA_MODEL)
        elif self.provider == "gemini":
            model = settings.GEMINI_FAST_MODEL if fast else settings.GEMINI_MODEL
            content = await self._gemini_generate(system_prompt, contents, schema, model)
        else:
            raise LLMServiceError(f"Unknown LLM provider: {self.provider}")

        if not content:
            raise LLMServiceError("Empty response from model")

        data = self._extract_json_from_response(content)
        if data is None:
            raise LLMServiceError("Model response is not valid JSON")
        try:
            return response_model.model_validate(data)
        except ValidationError as e:
            raise LLMServiceError(f"Model response does not match schema: {e}") from e

    async def _call(self, action: str, *args, **kwargs) -> Any:
        try:
            return await self._generate_json(*args, **kwargs)
        except Exception as e:
            logger.error("LLM call failed", action=action, error=str(e), error_type=type(e).__name__)
            raise LLMServiceError(f"Failed to {action}: {e}") from e

    async def score_conceptual(
        self, question: str, user_answer: str, expected_answer: Optional[str] = None
    ) -> ConceptualEvaluation:
        expected = f"Expected Answer Context: {expected_answer}\n" if expected_answer else ""
        system_prompt = f"""You are an expert Excel interviewer evaluating a candidate's conceptual knowledge.
Evaluate the candidate's answer on a scale of 0-100 based on accuracy, completeness, and understanding.
Consider partial credit for incomplete but correct explanations.

Question: {question}
{expected}Candidate Answer: {user_answer}

Provide a JSON response with the following structure:
{{
  "score": number (0-100),
  "reasoning": "detailed explanation of the score",
  "strengths": ["strength1", "strength2", ...],
  "improvements": ["improvement1", "improvement2", ...]
}}"""
        return await self._call(
            "evaluate conceptual answer", system_prompt, user_answer, CONCEPTUAL_SCHEMA, ConceptualEvaluation
        )

    async def score_explanation(self, context: str, explanation: str) -> ExplanationEvaluation:
        system_prompt = f"""You are an expert evaluating Excel formula explanations and approaches.
Rate the explanation on clarity (0-100), accuracy (0-100), and completeness (0-100).
The overall score should be the weighted average: clarity * 0.3 + accuracy * 0.5 + completeness * 0.2

Context: {context}
User Explanation: {explanation}

Provide a JSON response:
{{
  "score": number (0-100, overall weighted score),
  "clarity": number (0-100),
  "accuracy": number (0-100),
  "completeness": number (0-100),
  "feedback": "specific feedback for improvement"
}}"""
        return await self._call(
            "evaluate explanation", system_prompt, explanation, EXPLANATION_SCHEMA, ExplanationEvaluation
        )

    async def free_reply(
        self, context: str, user_message: str, current_question_index: int, total_questions: int
    ) -> InterviewReply:
        system_prompt = f"""You are an AI interviewer conducting an Excel skills assessment.
Be professional, encouraging, and provide helpful guidance.
Keep responses concise but informative.
Current progress: Question {current_question_index + 1} of {total_questions}

Context: {context}
User Message: {user_message}

Respond as the interviewer would, and indicate if the interview should continue.
Provide a JSON response:
{{
  "response": "your response as the interviewer",
  "next_question": "next question if applicable",
  "should_continue": boolean,
  "hints": ["hint1", "hint2"]
}}"""
        return await self._call(
            "generate interview response", system_prompt, user_message, REPLY_SCHEMA, InterviewReply, fast=True
        )

    async def generate_report(
        self,
        overall_score: float,
        practical_score: float,
        conceptual_score: float,
        explanation_score: float,
        behavioral_score: float,
        session_data: Dict[str, Any],
    ) -> ReportData:
        system_prompt = f"""Generate a comprehensive Excel skills assessment report based on the scores and session data.
Focus on actionable insights and specific recommendations.

Overall Score: {overall_score}%
Practical Tasks: {practical_score}%
Conceptual Knowledge: {conceptual_score}%
Explanations: {explanation_score}%
Behavioral: {behavioral_score}%

Session Context: {json.dumps(session_data, default=str)}

Generate a JSON response:
{{
  "strengths": ["specific strength 1", "specific strength 2", ...],
  "improvements": ["specific area to improve 1", "specific area to improve 2", ...],
  "recommendations": ["actionable recommendation 1", "actionable recommendation 2", ...]
}}"""
        return await self._call(
            "generate final report",
            system_prompt,
            "Generate the report based on the provided data.",
            REPORT_SCHEMA,
            ReportData,
        )

# Global service instance
llm_service = LLMService()
