"""
functions/scoring/prompt_composer.py

WHAT THIS FILE IS FOR
---------------------
Builds the ordered prompt segments sent to the generative endpoint,
from verified resume text plus caller-supplied evaluation parameters.

It acts as an adapter between:
- Free-form resume text (no schema, arbitrary headings)
- A stable, LLM-friendly instruction layout

MODES
-----
quick:
    One segment: rough ATS instruction (structure / contact info / summary /
    work experience) + output format + fenced full resume text.

detailed:
    instruction
    -> ### Job Title            (only if provided)
    -> ### Job Description      (only if provided)
    -> ### Candidate Resume Content   (experience/skills blocks, or full text)
    -> output-format directive  (score line, bulleted feedback, fenced full text)

SECTION ISOLATION
-----------------
Experience/skills blocks are found with a regex over a fixed vocabulary of
headings. It is a heuristic: when neither block is found the full text is
used instead, and the output directive always echoes the complete original
text regardless of mode.

WHAT THIS FILE IS NOT FOR
-------------------------
- Calling the upstream endpoint
- Parsing the reply
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import structlog

from functions.utils.errors import EmptyInputError
from schemas.input_schema import ScoringMode

logger = structlog.get_logger(__name__)

PromptSegments = Tuple[str, ...]

SECTION_HEADINGS = (
    "Objective",
    "Summary",
    "Experience",
    "Work Experience",
    "Professional Experience",
    "Skills",
    "Technical Skills",
    "Core Competencies",
    "Education",
    "Projects",
    "Certifications",
    "Awards",
    "Publications",
    "Volunteer Experience",
    "References",
)

# Longer headings first so "Work Experience" wins over "Experience" at the same offset.
_HEADING_ALT = "|".join(re.escape(h) for h in sorted(SECTION_HEADINGS, key=len, reverse=True))
_BLOCK_PATTERN = re.compile(
    rf"\b({_HEADING_ALT})\b\s*(.*?)(?=\b(?:{_HEADING_ALT})\b|$)",
    re.IGNORECASE | re.DOTALL,
)

QUICK_INSTRUCTION = (
    "You are an expert ATS (Applicant Tracking System). Give a **rough ATS score (0-100)** "
    "for the following resume. Focus primarily on its overall structure, clarity of sections "
    "like contact info, summary/objective, and work experience. Format your response in "
    "Markdown as follows:\n\n**ATS Score:** [SCORE]/100\n\n"
)

DETAILED_INSTRUCTION = (
    "You are an expert ATS (Applicant Tracking System) and HR professional. Your task is to "
    "analyze the provided resume content against the given job description and job title."
)

DETAILED_OUTPUT_DIRECTIVE = (
    "\n\nBased on the above, provide a detailed ATS score (0-100). The score should primarily "
    "reflect keyword matching, formatting, and overall relevance to the job description. Also, "
    "provide specific actionable feedback on how to improve the resume for this particular job, "
    "focusing on keywords, experience alignment, and structure. Format your response in Markdown "
    "properly with indentation as follows:\n\n**ATS Score:** [SCORE]/100\n\n**Feedback:**\n"
    "* [Point 1]\n* [Point 2]\n* [Point 3]...\n\n"
)


@dataclass(frozen=True)
class EvaluationParameters:
    mode: ScoringMode = ScoringMode.QUICK
    job_title: Optional[str] = None
    job_description: Optional[str] = None


def extract_section_blocks(full_text: str) -> Dict[str, str]:
    """
    Return {"experience": ..., "skills": ...}; missing blocks map to "".

    Newlines are collapsed before matching, so the blocks come back as
    single-line text. When a heading appears more than once, the last
    occurrence wins.
    """
    blocks = {"experience": "", "skills": ""}
    normalized = re.sub(r"\s*\n\s*", " ", full_text).strip()

    for match in _BLOCK_PATTERN.finditer(normalized):
        heading = match.group(1).lower()
        content = match.group(2).strip()
        if "experience" in heading and "volunteer" not in heading:
            blocks["experience"] = content
        elif "skills" in heading or "competencies" in heading:
            blocks["skills"] = content

    return blocks


def _fenced_full_text(full_text: str) -> str:
    return "**Full Extracted Resume Content:**\n```markdown\n" + full_text + "\n```"


class PromptComposer:
    """Build PromptSegments for the quick or detailed scoring mode."""

    @staticmethod
    def compose(extracted_text: str, params: EvaluationParameters) -> PromptSegments:
        if not isinstance(extracted_text, str) or not extracted_text.strip():
            raise EmptyInputError("Extracted text is empty; refusing to build a prompt.")

        if params.mode == ScoringMode.DETAILED:
            segments = PromptComposer._detailed(extracted_text, params)
        else:
            segments = (QUICK_INSTRUCTION + _fenced_full_text(extracted_text),)

        logger.debug(
            "prompt_composed",
            mode=params.mode.value,
            segment_count=len(segments),
            total_length=sum(len(s) for s in segments),
        )
        return segments

    @staticmethod
    def _detailed(full_text: str, params: EvaluationParameters) -> PromptSegments:
        blocks = extract_section_blocks(full_text)

        parts: list[str] = []
        if blocks["experience"]:
            parts.append("### Experience Block:\n" + blocks["experience"])
        if blocks["skills"]:
            parts.append("### Skills Block:\n" + blocks["skills"])
        resume_content = "\n\n".join(parts).strip()

        if not resume_content:
            logger.info("section_blocks_not_found_using_full_text", length=len(full_text))
            resume_content = full_text

        segments: list[str] = [DETAILED_INSTRUCTION]

        job_title = (params.job_title or "").strip()
        if job_title:
            segments.append("\n\n### Job Title:\n" + job_title)

        job_description = (params.job_description or "").strip()
        if job_description:
            segments.append("\n\n### Job Description:\n" + job_description)

        segments.append("\n\n### Candidate Resume Content:\n" + resume_content)
        segments.append(DETAILED_OUTPUT_DIRECTIVE + _fenced_full_text(full_text))

        return tuple(segments)

    @staticmethod
    def join(segments: PromptSegments) -> str:
        return "".join(segments)
