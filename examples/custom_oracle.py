"""Example of running Veritas against a custom oracle backend."""

import os
import sys
import json

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from veritas.agents.verifier import VerifierAgent
from veritas.graph import run_verification
from veritas.processing import pages_to_text
from veritas.report import summarize, to_csv


class KeywordOracle:
    """
    Example offline backend.
    
    Anything with a ``generate(system_prompt, user_prompt, **kwargs)``
    method returning the raw model text can stand in for LLMService,
    e.g. a local model server or a recorded-response fixture.
    """
    
    KNOWN_QUOTES = {
        "imagination is more important than knowledge": ("Albert Einstein", "ACCURATE"),
        "the only thing we have to fear is fear itself": ("Franklin D. Roosevelt", "MISATTRIBUTED"),
    }
    
    def generate(self, system_prompt, user_prompt, **kwargs):
        lowered = user_prompt.lower()
        items = [
            {
                "location": "unknown",
                "quote_text": quote,
                "claimed_source": source,
                "status": status,
                "notes": f"Matched the reference list entry for {source}."
            }
            for quote, (source, status) in self.KNOWN_QUOTES.items()
            if quote in lowered
        ]
        # Real models often wrap JSON in fences; the adapter strips them
        return "```json\n" + json.dumps({"items": items}) + "\n```"


def main():
    """Demonstrate a custom oracle backend."""
    
    print("=" * 60)
    print("Veritas - Custom Oracle Example")
    print("=" * 60)
    
    text = pages_to_text([
        'As Einstein said, "Imagination is more important than knowledge."',
        'Churchill told the nation "the only thing we have to fear is fear itself."',
    ])
    
    run = run_verification(
        text,
        max_chunk_size=80,
        verifier_agent=VerifierAgent(llm_service=KeywordOracle())
    )
    
    print(f"\n{summarize(run.stats)}\n")
    print(to_csv(run.items))


if __name__ == "__main__":
    main()
