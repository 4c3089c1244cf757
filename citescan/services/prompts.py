"""
Default prompts for the analysis collaborator.

Each prompt fixes the JSON shape the step executor validates. Placeholders
are filled with str.format().
"""

TOPICS_PROMPT = """You are auditing the website of {business_name} ({domain}) for how likely AI assistants are to cite it.

From the homepage and service pages below, identify the business's most important topics:
the products, services or subjects the business wants to be known for.

Rules:
- At most {max_clusters} topics, most important first
- Each topic is a short noun phrase (2-5 words)
- 3 to 6 search keywords per topic, lowercase
- priority is 1 for the most important topic, increasing by one

Return JSON only:
{{
  "topics": [
    {{"topic": "...", "keywords": ["...", "..."], "priority": 1}}
  ]
}}"""


HUB_SCORE_PROMPT = """You are scoring a web page as the primary source an AI assistant would cite for the topic "{topic}".

Score the page on four dimensions, each an integer from 0 to 25:
- clarity: does the page answer the topic directly and unambiguously?
- structure: headings, lists, FAQs and other extractable structure
- depth: coverage of the subject beyond marketing copy
- authority: evidence of expertise, sources, credentials, first-hand experience

For each dimension list concrete issues and short recommendations.

Return JSON only:
{{
  "scores": {{
    "clarity": {{"score": 0, "issues": ["..."], "recommendations": ["..."]}},
    "structure": {{"score": 0, "issues": [], "recommendations": []}},
    "depth": {{"score": 0, "issues": [], "recommendations": []}},
    "authority": {{"score": 0, "issues": [], "recommendations": []}}
  }}
}}"""


AUTHORITY_PROMPT = """Extract authority signals for {business_name} from the About/Team pages below.

- credentials: certifications, licenses, degrees, memberships
- awards: awards, rankings, notable recognition
- tenure: founding year, years in business, years of experience

Quote short phrases from the text. Use empty lists when nothing is stated.

Return JSON only:
{{
  "credentials": ["..."],
  "awards": ["..."],
  "tenure": ["..."]
}}"""
