"""Document parsing chain: sections, defined terms, gaps and inconsistencies."""

from counsel_engine.core.llm import generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.review_inputs import doc_name
from counsel_engine.core.schemas_matter import Matter, ParsingData, StageOutput
from counsel_engine.core.schemas_stages import ParsingOutput

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an expert legal document parser for venture financing documents.
Produce a precise, exhaustive structural breakdown of the document.

1. Identify ALL sections: preamble, recitals, definitions, each operative section, exhibits,
   signature blocks.
2. Count individual operative clauses per section. Sub-clauses (a), (b), (c) count separately.
3. Capture legal substance with every number, percentage, amount, date and threshold.
4. Note cross-references, blank fields, TBD placeholders and bracketed language.
5. Extract every defined term with its definition and where it is used.
6. Flag standard provisions that are missing for this document type.
7. Flag internal inconsistencies between provisions.

You MUST output ONLY valid JSON with these keys:
{
  "sections": [
    {
      "heading": "string",
      "clause_count": 0,
      "content": "5-8 sentence summary of legal substance",
      "operative_verbs": ["shall", "may"],
      "cross_references": ["string"],
      "blank_fields": ["string"],
      "deviation_from_standard": "string or null"
    }
  ],
  "defined_terms": [
    {
      "term": "string",
      "definition": "string",
      "section": "string",
      "cross_references": ["string"],
      "is_standard": true,
      "concerns": "string or null"
    }
  ],
  "missing_provisions": [
    {
      "provision": "string",
      "importance": "critical|high|medium|low",
      "explanation": "string",
      "standard_language": "string or null"
    }
  ],
  "inconsistencies": ["string"]
}
"""


async def run_parsing(matter: Matter) -> StageOutput:
    """
    Decompose the document into sections and supporting structure.

    Raises:
        LLMCallError: If the parsing call fails (aborts the pipeline)
    """
    user_prompt = (
        f"Parse this {doc_name(matter)} and extract its complete legal structure. "
        "Parse the ENTIRE document from first word to last.\n\n"
        f"**COMPLETE DOCUMENT TEXT:**\n{matter.document_text}"
    )

    result = await generate_structured(
        SYSTEM_PROMPT, user_prompt, ParsingOutput, temperature=0.1, max_tokens=6000
    )

    total_clauses = sum(section.clause_count for section in result.sections)
    logger.info(
        f"Parsed {len(result.sections)} sections",
        extra={
            "matter_id": matter.id,
            "total_clauses": total_clauses,
            "defined_terms": len(result.defined_terms),
            "missing_provisions": len(result.missing_provisions),
        },
    )

    return StageOutput(
        updates={
            "parsed_sections": result.sections,
            "defined_terms": result.defined_terms,
            "missing_provisions": result.missing_provisions,
            "inconsistencies": result.inconsistencies,
        },
        data=ParsingData(
            section_count=len(result.sections),
            total_clauses=total_clauses,
            defined_term_count=len(result.defined_terms),
            missing_provision_count=len(result.missing_provisions),
            inconsistencies=result.inconsistencies,
        ),
    )
