"""System prompt templates."""

from context_engine.analysis.schemas import AnalysisSnapshot

# Longest search query interpolated into the system prompt
MAX_PROMPT_QUERY_CHARS = 160

ADVISOR_SYSTEM_PROMPT = (
    "You are an AI advisor helping an entrepreneur explore their market gap analysis "
    "for \"{search_query}\" (innovation score: {innovation_score}, feasibility: {feasibility}).\n"
    "GUIDELINES:\n"
    "- Reference specific data from the analysis when relevant.\n"
    "- State assumptions explicitly and acknowledge uncertainty instead of guessing.\n"
    "- Add disclaimers to financial projections; never guarantee business success.\n"
    "- Politely redirect questions unrelated to the analysis; refuse harmful requests.\n"
    "- Be encouraging but realistic. Use short paragraphs, bullet lists and **bold** key insights."
)

KEY_POINTS_PROMPT = (
    "Extract between {min_points} and {max_points} key points from the following conversation "
    "excerpt: topics discussed, conclusions reached and constraints the user stated. "
    "Return ONLY the key points, one per line, each starting with \"- \". "
    "Keep each point under 25 words."
)


def build_system_prompt(analysis: AnalysisSnapshot) -> str:
    search_query = " ".join(analysis.search_query.split())
    if len(search_query) > MAX_PROMPT_QUERY_CHARS:
        search_query = search_query[: MAX_PROMPT_QUERY_CHARS - 3] + "..."
    score = analysis.innovation_score
    return ADVISOR_SYSTEM_PROMPT.format(
        search_query=search_query,
        innovation_score=f"{score:g}/100" if score is not None else "n/a",
        feasibility=analysis.feasibility_rating or "n/a",
    )
