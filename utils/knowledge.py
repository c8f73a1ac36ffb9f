from typing import List


def _keywords(query: str) -> List[str]:
    return [word for word in query.lower().split() if len(word) > 3]


def score_chunk(chunk: str, keywords: List[str]) -> int:
    chunk_lower = chunk.lower()
    return sum(1 for word in keywords if word in chunk_lower)


def find_relevant_chunk(conn, query: str) -> str:
    """Return the knowledge-base passage sharing the most keywords with ``query``.

    Keywords are the query's words longer than three characters. Returns an
    empty string when no passage shares any keyword.
    """
    keywords = _keywords(query)
    if not keywords:
        return ""
    cursor = conn.cursor()
    cursor.execute("SELECT text FROM knowledge_chunks ORDER BY id")
    best_chunk = ""
    best_score = 0
    for row in cursor.fetchall():
        score = score_chunk(row["text"], keywords)
        if score > best_score:
            best_chunk, best_score = row["text"], score
    return best_chunk
