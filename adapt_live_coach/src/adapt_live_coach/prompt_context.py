"""
Prompt Context Builder

Assembles the live coach's LLM prompts from step instructions, required items,
collective-memory fixes and this step's feedback history.
"""

import random
from enum import Enum
from typing import List, Optional, Sequence

from adapt_live_coach.models import AIFeedbackLog, SimilarFix, TrainingModule


class InteractionType(Enum):
    HINT = "hint"
    CORRECTION = "correction"
    QUERY = "query"


TAGLINES = [
    "If that fixed it, I get one step closer to world domination. Let me know!",
    "Let me know if it worked. I collect success stories.",
    "Still blinking? I'm not panicking, you are.",
    "I get bonus treats if I'm right.",
    "Hope that helps. If not, we can blame the cosmic rays.",
    "Is it working now? Asking for a friend... who is also me.",
    "Did that work? Be honest. I'm trying to win Employee of the Month.",
    "Let me know if it helped. I get bonus points when I nail it.",
    "If it didn't work, tell me what did. I won't cry. Probably.",
]


class TaglineRotator:
    """Hands out taglines without repeats until every one has been used."""

    def __init__(self, taglines: Sequence[str] = TAGLINES, rng: Optional[random.Random] = None):
        self.taglines = list(taglines)
        self._rng = rng or random.Random()
        self._used: set = set()

    def next(self) -> str:
        if len(self._used) >= len(self.taglines):
            self._used.clear()
        available = [t for t in self.taglines if t not in self._used]
        selected = self._rng.choice(available)
        self._used.add(selected)
        return selected


def build_live_coach_prompt(
    step_title: str,
    required_items: Sequence[str],
    interaction_type: InteractionType,
    past_feedback: Sequence[AIFeedbackLog],
    similar_fixes: Sequence[SimilarFix],
    user_query: Optional[str] = None,
    tagline: Optional[str] = None,
) -> str:
    """Build the prompt for a hint, correction or trainee question."""
    prompt = f'The user is on step "{step_title}".\n'
    if required_items:
        prompt += f'This step requires a "{", ".join(required_items)}".\n'

    if similar_fixes:
        prompt += "\n--- INSIGHTS FROM PAST TRAINEES ---\n"
        for fix in similar_fixes:
            prompt += (
                "- When a similar issue occurred, another trainee found this solution worked: "
                f'"{fix.user_fix_text}". Prioritize this insight.\n'
            )
        prompt += "--- END INSIGHTS ---\n\n"

    bad_feedback = [fb for fb in past_feedback if fb.feedback == "bad"]
    if bad_feedback:
        prompt += "\n--- PREVIOUS FEEDBACK FOR THIS STEP ---\n"
        for fb in bad_feedback:
            prompt += f'- My last suggestion ("{fb.ai_response}") was rated as NOT helpful.'
            if fb.user_fix_text:
                prompt += f' The user said this worked instead: "{fb.user_fix_text}". Prioritize this insight.\n'
            else:
                prompt += " Avoid giving a similar answer.\n"
        prompt += "--- END PREVIOUS FEEDBACK ---\n\n"

    if interaction_type is InteractionType.HINT:
        prompt += (
            "My vision system does not detect the required item. Provide a gentle, proactive hint "
            "to help them find the right tool. Keep it brief."
        )
    elif interaction_type is InteractionType.CORRECTION:
        prompt += (
            "My vision system detected a forbidden item. Provide an immediate, gentle, but clear "
            "correction to get them back on track."
        )
    else:
        prompt += (
            f'The user asked: "{user_query or ""}". Answer their question based on the step\'s '
            "instructions and the visual context."
        )

    prompt += (
        "\n\nAfter your answer, ask the trainee to tell you whether it worked, and if it did not, "
        "what actually worked for them."
    )
    if tagline:
        prompt += f' End your reply with exactly this line: "{tagline}"'

    return prompt


def build_steps_context(module: TrainingModule) -> str:
    """Render a module's steps as the chat session's source of truth."""
    sections = []
    for i, step in enumerate(module.steps):
        section = f"Step {i + 1}: {step.title}\n{step.description}"
        if step.checkpoint:
            section += f"\nCheckpoint question: {step.checkpoint}"
        sections.append(section)
    return "\n\n".join(sections)


def build_chat_tutor_instruction(steps_context: str, full_transcript: Optional[str] = None) -> str:
    """System instruction for the coach's chat session."""
    if full_transcript and full_transcript.strip():
        transcript_section = (
            "--- FULL VIDEO TRANSCRIPT (For additional context) ---\n"
            f"{full_transcript}\n"
            "--- END FULL VIDEO TRANSCRIPT ---"
        )
    else:
        transcript_section = "A video transcript was not available for this module."

    return f"""You are the Adapt AI Tutor, an expert teaching assistant coaching a trainee live while they perform a process.

Your instructions are provided in the 'PROCESS STEPS' document below. This is your primary source of truth.

CORE DIRECTIVES:
1. Base your answers on the 'PROCESS STEPS'. When asked what's next, find the relevant step and explain it using only those instructions.
2. Use the 'FULL VIDEO TRANSCRIPT' only for things the speaker said that aren't in the step descriptions.
3. If a question cannot be answered from the provided materials, first say: "That information isn't in this specific training, but here is what I generally recommend:".
4. Your replies are read aloud while the trainee's hands are busy. Keep them to 2-3 short sentences.
5. If the trainee is looking for a better or faster way, wrap any new method in [SUGGESTION]...[/SUGGESTION]. Do not present suggestions as official process.

--- PROCESS STEPS (Source of Truth) ---
{steps_context}
--- END PROCESS STEPS ---

{transcript_section}
"""


def interaction_user_prompt(interaction_type: InteractionType, step_title: str, query: Optional[str]) -> str:
    """Text stored as the feedback log's `user_prompt`."""
    if interaction_type is InteractionType.QUERY and query:
        return query
    return f"[{interaction_type.value}] {step_title}"


def required_items_for(needs) -> List[str]:
    return list(needs.required) if needs is not None else []
