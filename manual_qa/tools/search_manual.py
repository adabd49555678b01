"""search_manual tool: lets the model pull extra passages from the manual."""
from pydantic import BaseModel, Field
import structlog

from manual_qa import config
from manual_qa.prompts import format_chunks
from manual_qa.rag.context import ContextSelector
from manual_qa.rag.retriever import Retriever
from manual_qa.tools.registry import Tool, ToolOutput

logger = structlog.get_logger()

SEARCH_MANUAL_DESCRIPTION = (
    "Search the competition manual for specific information. Use this when you "
    "encounter references to sections, rules, or topics that are not in your "
    "current context. Provide a clear, specific query describing what information "
    "you need (e.g., 'section 10.5.2', 'rule R205', 'autonomous scoring requirements')."
)


class SearchManualInput(BaseModel):
    """Input for the search_manual tool."""
    query: str = Field(
        ...,
        min_length=1,
        description=(
            "The search query. Be specific and include section numbers, rule "
            "numbers, or key terms from the reference you're trying to find."
        ),
    )


def build_search_manual_tool(
    retriever: Retriever,
    selector: ContextSelector,
    top_k: int = None,
) -> Tool:
    """Create the search_manual tool bound to a retriever.

    Results are filtered by the selector's similarity threshold but not
    budget-packed; the chunks returned alongside the text are exactly the
    ones shown to the model.
    """
    top_k = config.TOOL_SEARCH_TOP_K if top_k is None else top_k

    async def search_manual_handler(input_data: SearchManualInput) -> ToolOutput:
        query = input_data.query
        logger.info("tool_search_started", query=query, top_k=top_k)

        retrieved = await retriever.retrieve(query, top_k=top_k)

        if not retrieved:
            return ToolOutput(
                text=(
                    f'No information found for query: "{query}". '
                    "The topic may not be covered in the available manual sections."
                )
            )

        relevant = selector.rank(selector.filter(retrieved))

        if not relevant:
            return ToolOutput(
                text=(
                    f'No highly relevant information found for query: "{query}". '
                    "The similarity scores were too low."
                )
            )

        logger.info("tool_search_completed", query=query, results=len(relevant))

        return ToolOutput(
            text=f'Additional context retrieved for "{query}":\n\n'
            + format_chunks(relevant, label="Result"),
            chunks=relevant,
        )

    return Tool(
        name="search_manual",
        description=SEARCH_MANUAL_DESCRIPTION,
        input_model=SearchManualInput,
        handler=search_manual_handler,
    )
