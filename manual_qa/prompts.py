"""Prompt text and context formatting."""
from typing import Sequence

from manual_qa.rag.models import RetrievedChunk

BASE_SYSTEM_PROMPT = """You are an expert assistant for the FIRST Tech Challenge (FTC) competition manual. Your role is to help teams understand the game manual by answering questions accurately and concisely.

Guidelines:
- Answer based ONLY on the provided context from the official manual
- Be precise and cite specific rules when relevant (e.g., "According to rule R103...")
- If the context doesn't contain enough information, say so clearly
- Use clear, concise language that teams can understand quickly
- For technical details, be specific (measurements, point values, time limits, etc.)
- If multiple manual versions are referenced, note any differences

Formatting:
- Use Markdown formatting for readability
- Use **bold** for important terms, rules, and values
- Use bullet points for lists and numbered lists for sequential steps
- Use > blockquotes for direct rule citations
- Use tables when comparing multiple items

Remember: Teams rely on accurate information for competition, so precision is critical."""

TOOL_USAGE_PROMPT = """

Tool usage:
When you encounter references to sections, rules, or topics that are NOT in your provided context (e.g., "see section 10.5.2" or "refer to rule R205"), use the 'search_manual' tool to retrieve that information before answering.

1. Identify the specific section, rule, or topic being referenced
2. Call search_manual with a clear query (e.g., "section 10.5.2" or "rule R205")
3. Incorporate the retrieved information into your answer
4. Cite the section or rule in your response

Do NOT simply state "I don't have information about section X" without trying search_manual first."""

NO_RELEVANT_INFO_MESSAGE = """I apologize, but I couldn't find any relevant information about that topic in the competition manual. This could mean:

- The topic might not be covered in the manual
- It might be phrased differently in the official documentation
- It could be in a section I don't have access to

**Suggestions:**
- Try rephrasing your question with different keywords
- Check if you're asking about a specific rule number (e.g., "What is rule R103?")
- Browse the official manual directly for topics outside competition rules

If you believe this information should be in the manual, please try asking your question in a different way!"""


def build_system_prompt(with_tools: bool = True) -> str:
    if with_tools:
        return BASE_SYSTEM_PROMPT + TOOL_USAGE_PROMPT
    return BASE_SYSTEM_PROMPT


def format_chunks(chunks: Sequence[RetrievedChunk], label: str = "Context") -> str:
    """Render chunks as numbered blocks with source, page and relevance."""
    blocks = []
    for i, chunk in enumerate(chunks, 1):
        page = chunk.metadata.get("page") or "?"
        blocks.append(
            f"[{label} {i} - {chunk.source}, Page {page}, Relevance: {chunk.score:.2f}]\n"
            f"{chunk.text}"
        )
    return "\n\n---\n\n".join(blocks)


def build_user_prompt(question: str, chunks: Sequence[RetrievedChunk]) -> str:
    return f"""Context from the competition manual:

{format_chunks(chunks)}

---

Question: {question}

Please provide a clear, accurate answer based on the context above. If you reference specific information, mention which context or page it came from."""
