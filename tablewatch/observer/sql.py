"""SQL text for the trigger program and per-table triggers.

Every function here is pure: same input, same SQL. Identifiers are always
double-quoted so the names derived from channel and table survive verbatim.
"""

from __future__ import annotations

from tablewatch.config.models import MAX_FRAGMENT_SIZE

DEFAULT_FUNCTION_PREFIX = "tblobs"

_TRIGGER_FUNCTION_TEMPLATE = """
CREATE FUNCTION {function}() RETURNS trigger AS $tablewatch$
  DECLARE
    row_data   RECORD;
    full_msg   TEXT;
    full_len   INT;
    cur_page   INT;
    page_count INT;
    msg_hash   TEXT;
    page       TEXT;
    pages      TEXT[] := '{{}}';
    pos        INT := 1;
  BEGIN
    IF (TG_OP = 'INSERT') THEN
      SELECT
        TG_TABLE_NAME AS table,
        TG_OP         AS op,
        json_agg(NEW) AS data
      INTO row_data;
    ELSIF (TG_OP = 'DELETE') THEN
      SELECT
        TG_TABLE_NAME AS table,
        TG_OP         AS op,
        json_agg(OLD) AS data
      INTO row_data;
    ELSIF (TG_OP = 'UPDATE') THEN
      SELECT
        TG_TABLE_NAME AS table,
        TG_OP         AS op,
        json_agg(NEW) AS data,
        json_agg(OLD) AS old_data
      INTO row_data;
    END IF;

    SELECT row_to_json(row_data)::TEXT         INTO full_msg;
    SELECT char_length(full_msg)               INTO full_len;
    SELECT md5(full_msg)                       INTO msg_hash;

    -- Pages hold at most {fragment_size} bytes and never split a character.
    -- A page that comes out exactly full is followed by one more page, so
    -- single-byte text gets floor(octet_length / {fragment_size}) + 1 pages.
    LOOP
      page := substr(full_msg, pos, {fragment_size});
      IF octet_length(page) > {fragment_size} THEN
        page := left(page, GREATEST(1, char_length(page) - (octet_length(page) - {fragment_size})));
      END IF;
      pages := array_append(pages, page);
      pos := pos + char_length(page);
      EXIT WHEN pos > full_len AND octet_length(page) < {fragment_size};
    END LOOP;
    page_count := array_length(pages, 1);

    FOR cur_page IN 1..page_count LOOP
      PERFORM pg_notify({channel},
        msg_hash || ':' || page_count || ':' || cur_page || ':' || pages[cur_page]
      );
    END LOOP;
    RETURN NULL;
  END;
$tablewatch$ LANGUAGE plpgsql;
"""


def quote_ident(name: str) -> str:
    """Quote a PostgreSQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a PostgreSQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def trigger_function_name(channel: str, prefix: str = DEFAULT_FUNCTION_PREFIX) -> str:
    return f"{prefix}_{channel}"


def table_trigger_name(channel: str, table: str) -> str:
    return f"{channel}_{table}"


def build_trigger_function_sql(
    function_name: str,
    channel: str,
    fragment_size: int = MAX_FRAGMENT_SIZE,
) -> str:
    """Build the CREATE FUNCTION statement for the trigger program.

    The function serializes the changed row as
    ``{"table", "op", "data": [row], "old_data": [row]}``, splits the text into
    pages of at most ``fragment_size`` bytes, cut on character boundaries, and
    sends each page with
    ``pg_notify(channel, 'md5:page_count:page_index:page_text')``.

    Args:
        function_name: Unquoted name of the function to create.
        channel: NOTIFY channel the pages are broadcast on.
        fragment_size: Maximum bytes per page; must stay under the 8000 byte
            payload limit once the header is added.

    Returns:
        A single SQL statement.

    Raises:
        ValueError: fragment_size outside 1..MAX_FRAGMENT_SIZE.
    """
    if not 1 <= fragment_size <= MAX_FRAGMENT_SIZE:
        raise ValueError(f"fragment_size must be within 1..{MAX_FRAGMENT_SIZE}, got {fragment_size}")
    return _TRIGGER_FUNCTION_TEMPLATE.format(
        function=quote_ident(function_name),
        channel=quote_literal(channel),
        fragment_size=int(fragment_size),
    )


def drop_trigger_function_sql(function_name: str) -> str:
    """Drop the trigger program and, by cascade, every trigger that uses it."""
    return f"DROP FUNCTION IF EXISTS {quote_ident(function_name)}() CASCADE"


def drop_table_trigger_sql(trigger_name: str, table: str) -> str:
    return f"DROP TRIGGER IF EXISTS {quote_ident(trigger_name)} ON {quote_ident(table)}"


def create_table_trigger_sql(trigger_name: str, table: str, function_name: str) -> str:
    return (
        f"CREATE TRIGGER {quote_ident(trigger_name)} "
        f"AFTER INSERT OR UPDATE OR DELETE ON {quote_ident(table)} "
        f"FOR EACH ROW EXECUTE PROCEDURE {quote_ident(function_name)}()"
    )
