"""Example usage script for the Veritas pipeline."""

import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


SAMPLE_TEXT = """
[P1]
As Einstein famously said, "Imagination is more important than knowledge."
Churchill reminded a frightened nation that "the only thing we have to fear is fear itself."

[P2]
Shakespeare wrote in Hamlet: "To be, or not to be, that is the question."
"""


def main():
    """Run a sample verification, optionally on a manuscript file given as argument."""
    
    # Check for API keys
    if not os.getenv("OPENAI_API_KEY"):
        print("Error: OPENAI_API_KEY not set in environment")
        print("Please create a .env file with your API key")
        return
    
    # Import after environment is loaded
    from veritas.errors import PipelineError
    from veritas.graph import create_graph
    from veritas.processing import load_text_file
    from veritas.report import export_filename, summarize, to_csv
    
    text = load_text_file(sys.argv[1]) if len(sys.argv) > 1 else SAMPLE_TEXT
    
    print("=" * 60)
    print("Veritas - Manuscript Citation Verification")
    print("=" * 60)
    print(f"\nInput: {len(text):,} characters")
    print("-" * 60)
    
    graph = create_graph()
    run = graph.run(text)
    
    try:
        for update in run:
            progress = update.progress
            print(
                f"Analyzing segment {progress.current} of {progress.total} "
                f"({progress.percent}%) - {len(update.items)} citations"
            )
    except PipelineError as e:
        print(f"\nStopped partway: {e}")
        print(f"{len(e.partial_items)} citations from earlier segments are kept.")
    
    print("\n" + "=" * 60)
    print("VERIFICATION REPORT")
    print("=" * 60)
    print(f"\n{summarize(run.stats)}")
    
    for i, item in enumerate(run.items, 1):
        print(f"\n[{i}] {item.location} - {item.status.value}")
        print(f"  Quote: {item.quote_text}")
        print(f"  Source: {item.claimed_source}")
        print(f"  Notes: {item.notes}")
    
    csv_content = to_csv(run.items)
    if csv_content:
        path = Path(export_filename())
        path.write_text(csv_content, encoding="utf-8")
        print(f"\nReport exported to {path}")


if __name__ == "__main__":
    main()
