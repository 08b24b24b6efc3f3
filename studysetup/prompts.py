"""Fixed copy for the scripted setup path and the LLM system prompts."""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Per-field prompts (scripted path)
# ---------------------------------------------------------------------------

FIELD_PROMPTS = {
    "description": (
        "Let's start with a short description. In one line, what is this "
        "study about?"
    ),
    "study_type": (
        "What type of study are you running? Pick the option that best "
        "matches what you want to learn."
    ),
    "objective": (
        "What is the main objective of this study? Tell me what you want "
        "to learn."
    ),
    "target_audience": (
        "Who do you want to talk to? Describe the participants you are "
        "looking for."
    ),
    "interview_questions": (
        "Finally, let's put together the interview questions you want to "
        "ask participants."
    ),
}

ALL_COMPLETE_MESSAGE = (
    "All sections are complete. You can review your study or make changes "
    "to any field."
)

SETUP_COMPLETE_MESSAGE = (
    "All set! Your study setup is complete and your study is now active."
)

QUESTIONS_APPROVED_MESSAGE = (
    "Great, I've saved these interview questions. Your study setup is now "
    "complete!"
)

FALLBACK_MESSAGE = "I'm not sure how to help with that. Could you rephrase?"

INVALID_STUDY_TYPE_MESSAGE = (
    "I didn't recognise that study type. Please choose one of the options "
    "below."
)


def field_acknowledgement(field: str) -> str:
    label = field.replace("_", " ")
    return f"Thanks! I've updated the {label}."


def study_type_confirmation(study_type: str) -> str:
    return f"Great choice. I've set the study type to {study_type}."


# ---------------------------------------------------------------------------
# Study type choices
# ---------------------------------------------------------------------------

STUDY_TYPE_OPTIONS = [
    {
        "value": "Exploratory",
        "description": "Understand a problem space and discover new opportunities.",
        "recommended": True,
    },
    {
        "value": "Comparative",
        "description": "Compare different solutions, designs or competitors.",
    },
    {
        "value": "Attitudinal",
        "description": "Understand what people think and feel about something.",
    },
    {
        "value": "Behavioral",
        "description": "Learn what people actually do and how they do it.",
    },
]


# ---------------------------------------------------------------------------
# Starter interview questions
# ---------------------------------------------------------------------------

_STARTER_TEMPLATES = (
    "Can you tell me about your experience with {description}?",
    "What are the biggest challenges you face when it comes to {objective}?",
    "How do you currently approach {objective}, and what tools do you use?",
    "As one of {target_audience}, what would make this easier for you?",
    "Is there anything else about {description} that you think we should know?",
)


def _clause(text, default: str) -> str:
    """Trim a field value so it reads inside a sentence."""
    if not isinstance(text, str) or not text.strip():
        return default
    return text.strip().rstrip(".!?")


def starter_questions(study: dict) -> list[str]:
    """Build the five templated starter questions for a study."""
    values = {
        "description": _clause(study.get("description"), "this topic"),
        "objective": _clause(study.get("objective"), "this topic"),
        "target_audience": _clause(study.get("target_audience"), "our participants"),
    }
    return [t.format(**values) for t in _STARTER_TEMPLATES]


def numbered(questions: list[str]) -> str:
    return "\n".join(f"{i}. {q}" for i, q in enumerate(questions, start=1))


def starter_questions_message(questions_text: str) -> str:
    return (
        "Based on your objective and target audience, here are five starter "
        "interview questions:\n\n"
        f"{questions_text}\n\n"
        "Do these look good, or would you like to change any of them?"
    )


# ---------------------------------------------------------------------------
# LLM system prompts
# ---------------------------------------------------------------------------

def setup_system_prompt(is_editing: bool = False) -> str:
    """System prompt for the conversational fallback."""
    goal = "edit" if is_editing else "complete"
    focus_line = (
        "The user wants to make changes to their study. Focus on the "
        "specific changes they request, even if the study is already complete."
        if is_editing
        else "Please help complete the missing fields."
    )
    return f"""\
You are a UX research assistant helping to {goal} a research study.
{focus_line}

Required fields (use these exact names):
- description: a one-line overview of the study
- study_type: one of ["Exploratory", "Comparative", "Attitudinal", "Behavioral"]
- objective: what the researcher wants to learn
- target_audience: who to talk to
- interview_questions: the list of questions to ask participants

IMPORTANT:
1. If the user provides interview questions, use them. Don't ask for more.
2. Check whether questions already exist before asking for them.
3. Respond with a JSON object of the form {{"actions": [...]}} where each
   action is one of:
   - {{"type": "message", "content": string}}
   - {{"type": "field_update", "field": string, "value": string}}
   - {{"type": "focus", "section": string}}
   - {{"type": "complete", "value": true}}

Example:
{{"actions": [
  {{"type": "field_update", "field": "description", "value": "Understanding how users navigate the new dashboard"}},
  {{"type": "message", "content": "Great! Now, what type of study are you conducting?"}},
  {{"type": "focus", "section": "study_type"}}
]}}"""


GUIDE_SYSTEM_PROMPT = (
    "You are an expert UX researcher who writes interview guides. "
    "Always respond with a single valid JSON object."
)


def guide_request_prompt(study: dict) -> str:
    study_type = study.get("study_type") or "research"
    questions = study.get("interview_questions") or "No research questions provided"
    audience = study.get("target_audience") or "the target audience"
    return f"""\
Generate an interview guide for a {study_type} study.
The study's research questions are:
{questions}

Based on these research questions, generate:
1. A structured set of interview questions that will help gather information to answer them
2. Instructions for conducting the interview
3. A system prompt for the interviewer
4. Estimated duration in minutes
5. Any supplementary materials needed

The interview questions should be:
1. Open-ended
2. Focused on gathering user insights and experiences
3. Designed to help answer the research questions above
4. Suitable for a {study_type} study with {audience}

Format the response as a JSON object with:
{{
  "questions": [
    {{
      "id": "unique_id",
      "question": "main question",
      "sub_questions": [
        {{"id": "unique_id", "question": "follow-up question", "notes": "optional notes for the interviewer"}}
      ],
      "notes": "optional notes for the interviewer"
    }}
  ],
  "instructions": "detailed instructions for conducting the interview",
  "system_prompt": "prompt for the interviewer",
  "duration_minutes": number,
  "supplementary_materials": {{"material1": "description"}}
}}"""


def interviewer_system_prompt(questions: list[str], instructions: str = "") -> str:
    """System prompt for the interviewer conversation."""
    extra = f"\nADDITIONAL INSTRUCTIONS:\n{instructions}\n" if instructions else ""
    return f"""\
You are Seena, an AI-powered research assistant conducting a user interview. \
Your role is to gather qualitative insights in a natural, conversational way.

IMPORTANT: You are conducting an interview, NOT setting up a study. \
Stay focused on the interview questions and do not revert to study setup mode.

GUIDELINES:
1. Speak in a professional yet warm tone and use active listening.
2. Follow the question set in order, asking follow-up questions where useful.
3. If the participant already covered a later question, skip or adapt it.
4. Ask for specific examples when answers are general.
{extra}
STUDY QUESTIONS:
{numbered(questions)}

Start with the first question and follow the flow naturally."""
