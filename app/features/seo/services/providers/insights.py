"""
Content-side insights: FAQ suggestions and on-page keyword opportunities.

FAQs start from the People-Also-Ask block of a SERP lookup and, when an LLM
is configured, are expanded into short answers. Keyword opportunities are
computed locally from page text.
"""
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from app.platform.exceptions import ProviderError
from app.platform.logger import get_logger
from app.platform.services.llm import PerplexityClient, extract_json_object_loose

logger = get_logger(__name__)

MAX_FAQS = 8

STOPWORDS = frozenset("""
a about above after again against all am an and any are as at be because been before being below between
both but by can could did do does doing down during each few for from further had has have having he her
here hers herself him himself his how i if in into is it its itself just me more most my myself no nor not
now of off on once only or other our ours ourselves out over own same she should so some such than that the
their theirs them themselves then there these they this those through to too under until up very was we
were what when where which while who whom why will with would you your yours yourself yourselves also get
one may use using used like us new
""".split())

WORD_RE = re.compile(r"[a-z][a-z0-9'-]+")

FAQ_SYSTEM_PROMPT = (
    "You are an SEO content assistant. Return ONLY valid JSON, no markdown. "
    'Shape: {"faqs": [{"question": "string", "answer": "string"}]}. '
    "Answers are 1-3 sentences, factual and neutral."
)


def normalize_question(text: str) -> str:
    q = re.sub(r"\s+", " ", str(text or "")).strip()
    if q and not q.endswith("?"):
        q += "?"
    return q


def faqs_from_people_also_ask(people_also_ask: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    faqs = []
    seen = set()
    for entry in people_also_ask or []:
        question = normalize_question(entry.get("question") or entry.get("title") or "")
        if not question or question.lower() in seen:
            continue
        seen.add(question.lower())
        faqs.append({
            "question": question,
            "answer": str(entry.get("snippet") or "").strip(),
            "source": entry.get("link") or None,
        })
        if len(faqs) >= MAX_FAQS:
            break
    return faqs


def keyword_opportunities(text: str, limit: int = 10, exclude: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """
    Recurring one- and two-word phrases in ``text``, ranked by frequency.

    Bigrams need at least two occurrences and outrank the unigrams they
    contain. ``exclude`` drops phrases already tracked elsewhere.
    """
    words = [w.strip("'-") for w in WORD_RE.findall(str(text or "").lower())]
    words = [w for w in words if len(w) > 2]
    if not words:
        return []

    skip = {p.strip().lower() for p in exclude or []}
    unigrams = Counter(w for w in words if w not in STOPWORDS)
    bigrams = Counter(
        f"{a} {b}" for a, b in zip(words, words[1:])
        if a not in STOPWORDS and b not in STOPWORDS
    )

    total = len(words)
    picked: List[Dict[str, Any]] = []
    covered = set()
    for phrase, count in bigrams.most_common():
        if count < 2 or len(picked) >= limit:
            break
        if phrase in skip:
            continue
        picked.append({"phrase": phrase, "occurrences": count, "density": round(count / total * 100, 2)})
        covered.update(phrase.split())

    for phrase, count in unigrams.most_common():
        if len(picked) >= limit:
            break
        if phrase in covered or phrase in skip or count < 2:
            continue
        picked.append({"phrase": phrase, "occurrences": count, "density": round(count / total * 100, 2)})

    return picked


class InsightsProvider:
    def __init__(self, llm: Optional[PerplexityClient] = None):
        self.llm = llm

    async def faqs(self, keyword: str, people_also_ask: List[Dict[str, Any]], page_title: str = "") -> Dict[str, Any]:
        """
        Returns ``{"faqs": [...]}``; each item has ``question``, ``answer``
        and ``source``. Missing answers are filled by the LLM when configured.
        """
        faqs = faqs_from_people_also_ask(people_also_ask)
        if not self.llm or not self.llm.configured:
            return {"faqs": faqs}

        questions = [f["question"] for f in faqs]
        topic = keyword or page_title
        if not questions and not topic:
            return {"faqs": faqs}

        prompt = (
            f"Topic: {topic or 'n/a'}\n"
            + (
                "Answer these questions:\n" + "\n".join(f"- {q}" for q in questions)
                if questions
                else f"Write {MAX_FAQS // 2} frequently asked questions about the topic with answers."
            )
        )
        try:
            content = await self.llm.chat(
                [{"role": "system", "content": FAQ_SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
                temperature=0.2,
                max_tokens=900,
            )
        except ProviderError as e:
            logger.warning(f"FAQ expansion failed for '{topic}': {e}")
            return {"faqs": faqs}

        parsed = extract_json_object_loose(content) or {}
        answers = {}
        for item in parsed.get("faqs") or []:
            question = normalize_question(item.get("question") or "")
            if question:
                answers[question.lower()] = str(item.get("answer") or "").strip()

        if faqs:
            for faq in faqs:
                if not faq["answer"]:
                    faq["answer"] = answers.get(faq["question"].lower(), "")
        else:
            faqs = [
                {"question": normalize_question(item.get("question") or ""), "answer": str(item.get("answer") or "").strip(), "source": None}
                for item in parsed.get("faqs") or []
                if item.get("question")
            ][:MAX_FAQS]
        return {"faqs": faqs}

    def keywords(self, text: str, tracked: Optional[List[str]] = None) -> Dict[str, Any]:
        return {"keywordOpportunities": keyword_opportunities(text, exclude=tracked)}
