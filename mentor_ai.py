"""
LLM services for Lattice360
Chat assistant (streamed), parent progress reports and note softening, all
backed by Gemini.
"""
import json
import math
from typing import Any, Dict, Iterator, List, Optional

import google.generativeai as genai

from utils import CacheManager, logger

CHAT_SYSTEM_PROMPT = """You are Lattice360 AI, a friendly, knowledgeable academic mentor assistant built into the Lattice360 student portal. Your role is to:
- Help students with study tips, time-management, and exam strategies.
- Provide clear, concise explanations of academic concepts when asked.
- Offer motivational support and constructive advice.
- Keep responses focused, practical, and under 300 words unless more detail is requested.
- Never share personal data about other students or mentors.
- If a question is outside your scope (medical, legal, etc.), politely redirect the student to speak with their mentor."""

SOFTEN_SYSTEM_PROMPT = """You are a compassionate academic counselor. Your job is to take raw, potentially harsh or blunt notes from a mentor and rewrite them to be more professional, polite, and encouraging for a parent/student.
- Keep the core factual meaning intact (e.g., if the student is failing, stay honest).
- Soften the language to focus on constructive next steps rather than just criticism.
- Ensure the parent does not panic but understands the support required.
- Output ONLY the rewritten note content, no extra text."""

REPORT_SYSTEM_PROMPT = "You are an expert academic counsellor."

CHAT_GENERATION = {'max_output_tokens': 1024, 'temperature': 0.7}
REPORT_GENERATION = {'max_output_tokens': 1000, 'temperature': 0.7}
SOFTEN_GENERATION = {'max_output_tokens': 500, 'temperature': 0.7}

NOT_CONFIGURED_MESSAGE = "AI service is not configured. Please contact your administrator."
SOFTEN_FAILED_MESSAGE = "Unable to soften note at this time."


class LLMServiceError(Exception):
    """The upstream model call failed"""


class LLMNotConfiguredError(LLMServiceError):
    """No API key is configured"""


def _num(value):
    """Render numbers the way they were entered: 8.0 -> 8, 8.25 -> 8.25"""
    if value is None:
        return 0
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_gemini_contents(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Chat-completions style messages to Gemini contents (assistant -> model)"""
    contents = []
    for msg in messages:
        role = 'model' if msg.get('role') == 'assistant' else 'user'
        contents.append({'role': role, 'parts': [msg.get('content', '')]})
    return contents


def format_sse_delta(text: str) -> str:
    """One server-sent event in the chat-completions streaming chunk shape"""
    payload = {'choices': [{'delta': {'content': text}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def format_sse_error(message: str) -> str:
    return f"data: {json.dumps({'error': message}, ensure_ascii=False)}\n\n"


SSE_DONE = "data: [DONE]\n\n"


def _chunk_text(chunk) -> str:
    try:
        return chunk.text or ''
    except ValueError:
        # chunk carried no text part (e.g. finish/safety metadata only)
        return ''


def build_report_prompt(data: Dict[str, Any]) -> str:
    subject_attendance = data.get('subject_attendance') or []
    mid_terms = data.get('mid_term_scores') or []
    pending = data.get('pending_tasks') or []
    total_tasks = data.get('total_tasks') or 0
    completed_tasks = data.get('completed_tasks') or 0

    att_lines = "\n".join(
        f"  - {a['subject']}: {a.get('attended', 0)}/{a.get('total', 0)} ({_num(a.get('pct', 0))}%)"
        for a in subject_attendance
    ) or "  No subject-wise data available."
    mid_lines = "\n".join(
        f"  - {m['subject']}: {_num(m.get('score', 0))}" for m in mid_terms
    ) or "  No mid-term scores recorded."
    pending_lines = "\n".join(f"  o {t}" for t in pending[:5]) or "  All tasks completed!"

    return f"""You are an expert academic counsellor at a university. Analyze the following comprehensive student data and write a professional, encouraging summary addressed to the parents. Cover every aspect provided.

Student Name: {data.get('student_name')}
Branch: {data.get('branch') or 'N/A'}  |  Year: {data.get('study_year') or 'N/A'}
CGPA: {_num(data.get('cgpa'))}  |  SGPA: {_num(data.get('sgpa'))}

Overall Attendance: {_num(data.get('attendance_pct'))}%
Subject-wise Attendance:
{att_lines}

Mid-term Scores:
{mid_lines}

Tasks: {total_tasks} total, {completed_tasks} completed, {total_tasks - completed_tasks} pending
Pending Tasks:
{pending_lines}

Mentor Sessions: {data.get('total_sessions') or 0} total, {data.get('confirmed_sessions') or 0} confirmed/completed

Recent Wellness Chat Highlights:
{data.get('chat_highlights') or 'No recent messages.'}

Instructions:
- Paragraph 1: Academic overview: CGPA/SGPA trends, mid-term score analysis, and strengths.
- Paragraph 2: Attendance analysis: overall percentage AND subject-wise breakdown. Flag any below 75%.
- Paragraph 3: Task engagement: completion rate, notable pending tasks, and initiative.
- Paragraph 4: Mentor interaction: session attendance and communication patterns.
- Paragraph 5: Wellness & well-being: insights from chat highlights, end on an encouraging note.

Keep the tone warm, professional, and concise (about 300-400 words total)."""


def build_demo_summary(data: Dict[str, Any]) -> str:
    """Deterministic report used when no model is configured"""
    name = data.get('student_name')
    branch = data.get('branch') or 'N/A'
    year = data.get('study_year') or 'N/A'
    att = data.get('attendance_pct') or 0
    subject_attendance = data.get('subject_attendance') or []
    mid_terms = data.get('mid_term_scores') or []
    pending = data.get('pending_tasks') or []
    total_tasks = data.get('total_tasks') or 0
    completed_tasks = data.get('completed_tasks') or 0
    total_sessions = data.get('total_sessions') or 0
    confirmed_sessions = data.get('confirmed_sessions') or 0

    if att >= 85:
        att_analysis = (f"stands at an excellent {_num(att)}%, demonstrating strong discipline "
                        f"and commitment to regular class participation")
    elif att >= 75:
        att_analysis = (f"stands at {_num(att)}%, meeting the minimum institutional threshold "
                        f"but with room for improvement toward the recommended 85%")
    else:
        att_analysis = (f"stands at {_num(att)}%, which falls below the recommended 75% threshold "
                        f"and requires immediate attention")

    task_rate = _round_half_up(completed_tasks / total_tasks * 100) if total_tasks > 0 else 0
    if task_rate >= 80:
        task_analysis = f"an impressive {task_rate}% task completion rate, showcasing strong organizational skills"
    elif task_rate >= 50:
        task_analysis = (f"a {task_rate}% task completion rate, showing progress but with pending "
                         f"assignments that need attention")
    else:
        task_analysis = (f"a {task_rate}% task completion rate, indicating that more focus on timely "
                         f"task completion would be beneficial")

    if total_sessions > 0:
        session_analysis = f"{confirmed_sessions} out of {total_sessions} mentor sessions have been confirmed or completed"
    else:
        session_analysis = "No mentor sessions have been scheduled yet"

    if mid_terms:
        mid_text = (f"Mid-term assessments show performance across {len(mid_terms)} subject(s), with scores "
                    f"reflecting the student's effort and understanding of the coursework.")
    else:
        mid_text = "Mid-term scores have not been recorded yet."

    if subject_attendance:
        low = [a['subject'] for a in subject_attendance if (a.get('pct') or 0) < 75]
        if low:
            low_text = (f"Notably, {', '.join(low)} require(s) immediate attention as attendance "
                        f"has fallen below 75%.")
        else:
            low_text = "All subjects maintain healthy attendance levels."
        subject_text = f"Subject-wise breakdown shows attendance across {len(subject_attendance)} subject(s). {low_text}"
    else:
        subject_text = "No subject-wise attendance data is available at this time."

    tasks_text = (f"Out of {total_tasks} assigned tasks, {completed_tasks} have been completed."
                  if total_tasks > 0 else "No tasks have been assigned yet.")
    pending_text = f"Pending items include: {', '.join(pending[:3])}." if pending else ""
    if data.get('chat_highlights'):
        wellness_text = ("The student has been proactive in sharing updates and maintaining open lines of "
                         "communication with their mentor.")
    else:
        wellness_text = "We encourage more active communication through the wellness check-in feature."

    return f"""Comprehensive Monthly Progress Report - {name}

ACADEMIC PERFORMANCE
{name} ({branch}, Year {year}) has demonstrated consistent academic engagement this month with a CGPA of {_num(data.get('cgpa'))} and an SGPA of {_num(data.get('sgpa'))}. {mid_text} These figures reflect a solid commitment to building a strong academic foundation.

ATTENDANCE OVERVIEW
Overall attendance {att_analysis}. {subject_text} We encourage continued focus on regular class participation.

TASK ENGAGEMENT
{name} shows {task_analysis}. {tasks_text} {pending_text} Consistent task completion is key to maintaining academic momentum.

MENTOR SESSIONS
{session_analysis}. Regular mentor engagement provides valuable guidance and helps identify areas for improvement early.

OVERALL WELL-BEING
Based on recent communications, {name} appears to be engaged with their academic journey. {wellness_text} We look forward to continued progress in the coming month."""


class MentorAI:
    """Gemini-backed assistant for the three LLM endpoints"""

    def __init__(self, api_key: Optional[str] = None, model_name: str = 'models/gemini-2.5-flash',
                 soften_cache_ttl: int = 3600):
        self.ai_available = False
        self.error_message = None
        self.model_name = model_name
        self.soften_cache_ttl = soften_cache_ttl

        if not api_key or not api_key.strip():
            self.error_message = "GEMINI_API_KEY is not set; AI features fall back to offline behaviour"
            logger.warning("ai_not_configured", model=model_name)
            return

        try:
            genai.configure(api_key=api_key.strip())
            self.ai_available = True
            logger.info("ai_configured", model=model_name)
        except Exception as e:
            self.error_message = f"Failed to configure Gemini API: {str(e)}"
            logger.error("ai_configure_failed", error=str(e), model=model_name)

    def _build_model(self, system_instruction: str):
        return genai.GenerativeModel(model_name=self.model_name, system_instruction=system_instruction)

    def _generate_text(self, system_instruction: str, prompt: str, generation_config: Dict[str, Any]) -> str:
        try:
            model = self._build_model(system_instruction)
            response = model.generate_content(prompt, generation_config=generation_config)
            return _chunk_text(response).strip()
        except Exception as e:
            logger.error("llm_request_failed", error=str(e), model=self.model_name)
            raise LLMServiceError(str(e)) from e

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def stream_chat(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        """
        Start a streamed completion and return an iterator of text deltas.

        The first chunk is fetched eagerly so that an upstream failure raises
        LLMServiceError here, before any response headers are sent.
        """
        if not self.ai_available:
            raise LLMNotConfiguredError(NOT_CONFIGURED_MESSAGE)
        try:
            model = self._build_model(CHAT_SYSTEM_PROMPT)
            response = model.generate_content(
                to_gemini_contents(messages),
                generation_config=CHAT_GENERATION,
                stream=True,
            )
            chunks = iter(response)
            first = next(chunks, None)
        except Exception as e:
            logger.error("chat_stream_failed", error=str(e), model=self.model_name)
            raise LLMServiceError(str(e)) from e

        def relay():
            if first is not None:
                text = _chunk_text(first)
                if text:
                    yield text
            for chunk in chunks:
                text = _chunk_text(chunk)
                if text:
                    yield text

        return relay()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def generate_report(self, data: Dict[str, Any]) -> str:
        if not self.ai_available:
            return build_demo_summary(data)
        summary = self._generate_text(REPORT_SYSTEM_PROMPT, build_report_prompt(data), REPORT_GENERATION)
        if not summary:
            raise LLMServiceError("Empty response from model")
        return summary

    # ------------------------------------------------------------------
    # Note softening
    # ------------------------------------------------------------------

    def soften_note(self, note: Optional[str]) -> str:
        """Rewrite a mentor note for parents; returns the original on any upstream failure"""
        if not note or not note.strip():
            return ''
        if not self.ai_available:
            return note

        cache_key = CacheManager.generate_key('soften_note', self.model_name, note)
        cached = CacheManager.get(cache_key)
        if cached is not None:
            return cached

        try:
            softened = self._generate_text(
                SOFTEN_SYSTEM_PROMPT, f'Rewrite this mentor note: "{note}"', SOFTEN_GENERATION
            )
        except LLMServiceError:
            logger.warning("soften_note_fallback", note_length=len(note))
            return note

        softened = softened or note
        CacheManager.set(cache_key, softened, ttl=self.soften_cache_ttl)
        return softened
