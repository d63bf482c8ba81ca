from typing import List, Sequence

from app.ai_feature.schema_store import SchemaSnapshot
from app.core.schemas import MappingRule


SYSTEM_MESSAGE = "You generate SQL for PostgreSQL safely."

# Present in every prompt, whatever the question says
SELECT_ONLY_DIRECTIVE = (
    "Only generate SELECT statements; never generate INSERT, UPDATE, DELETE, "
    "DROP, ALTER or any other statement."
)
NO_INVENTED_NAMES_DIRECTIVE = (
    "Do not invent table or column names that are not listed in the schema below."
)
QUOTE_IDENTIFIERS_DIRECTIVE = (
    "Always wrap table and column names that contain uppercase letters or "
    'underscores in double quotes ("").'
)
BOUNDED_RESULTS_DIRECTIVE = (
    "Always include WHERE filters or a LIMIT when the question suggests "
    "summarising, aggregating, latest or pending data."
)

SYSTEM_DIRECTIVES = (
    QUOTE_IDENTIFIERS_DIRECTIVE,
    SELECT_ONLY_DIRECTIVE,
    NO_INVENTED_NAMES_DIRECTIVE,
    BOUNDED_RESULTS_DIRECTIVE,
)


def render_schema(snapshot: SchemaSnapshot) -> str:
    if not snapshot.columns:
        return "(schema unavailable: no tables are known yet)"

    blocks = []
    for columns in snapshot.tables().values():
        lines = [
            f"{column.table_name}, {column.column_name}, {column.data_type}"
            for column in columns
        ]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_rule(rule: MappingRule) -> str:
    phrases = ", ".join(f'"{phrase}"' for phrase in sorted(rule.trigger_phrases))
    lines = [f'- When the user says {phrases} -> use table "{rule.canonical_table}".']
    lines.extend(f"    - {hint}" for hint in rule.filter_hints)
    return "\n".join(lines)


class PromptAssembler:
    """Builds the single text prompt sent to the generation model."""

    def build(
        self, question: str, snapshot: SchemaSnapshot, rules: Sequence[MappingRule]
    ) -> str:
        sections: List[str] = ["You are an AI expert in writing PostgreSQL queries."]

        directives = "\n".join(
            f"{number}. {directive}"
            for number, directive in enumerate(SYSTEM_DIRECTIVES, start=1)
        )
        sections.append(f"Rules:\n{directives}")

        if rules:
            mappings = "\n".join(render_rule(rule) for rule in rules)
            sections.append(
                f"Use the following table mappings for this question:\n{mappings}"
            )

        sections.append(
            "Schema (table_name, column_name, data_type):\n" + render_schema(snapshot)
        )
        sections.append(f'User question: "{question}"')
        sections.append("Return only SQL code, no explanation.")
        return "\n\n".join(sections) + "\n"
