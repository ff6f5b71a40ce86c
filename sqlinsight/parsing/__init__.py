"""Response resilience pipeline.

Turns raw model responses into schema-conformant data:
  1. Response Adapter: normalizes provider envelope shapes to plain text
  2. Content Preprocessor: ordered, toggleable cleaning rules
  3. Intelligent Parser: five-strategy cascade, repair, guaranteed fallback

Input:  RawResponse (any provider-shaped object)
Output: ParseResult (data + strategy + confidence + validation report)
"""
