# proposal_parser.py
# LLM enrichment of a stored proposal. Best-effort: the raw proposal row is
# the record of receipt and stays as it is when anything here fails.
import logging
from typing import Any, Dict

from . import models
from .ai_helpers import decode_llm_json
from .exceptions import ConfigurationError, LLMGenerationError, LLMResponseDecodeError
from .prompts import PROPOSAL_PROMPT
from .storage import JsonStore

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 5

MERGED_FIELDS = (
    "price_usd",
    "line_items",
    "delivery_days",
    "warranty_months",
    "payment_terms",
    "completeness_score",
)


def merge_parsed(proposal: models.Proposal, parsed: models.ParsedProposal) -> Dict[str, Any]:
    """New value where the LLM gave one, otherwise whatever is already stored."""
    return {
        field: getattr(parsed, field) if getattr(parsed, field) is not None else getattr(proposal, field)
        for field in MERGED_FIELDS
    }


class ProposalEnricher:
    def __init__(self, store: JsonStore, llm):
        self.store = store
        self.llm = llm

    def enrich(self, proposal_id: str, text: str) -> bool:
        """
        Parse ``text`` with the proposal prompt and merge the result into the
        proposal. Returns True when the proposal was updated; never raises.
        """
        if not text or len(text.strip()) <= MIN_CONTENT_LENGTH:
            logger.info("Proposal %s: content too short, skipping AI parsing", proposal_id)
            return False

        try:
            proposal = self.store.get("proposals", proposal_id)
            if proposal is None:
                logger.warning("Proposal %s vanished before enrichment", proposal_id)
                return False
            if proposal.parsed_at is not None:
                logger.info("Proposal %s already enriched at %s", proposal_id, proposal.parsed_at)
                return False

            logger.info("Parsing proposal %s with AI (%d chars)", proposal_id, len(text))
            raw = self.llm.complete(PROPOSAL_PROMPT, text)
            parsed = decode_llm_json(raw, models.ParsedProposal)

            updated = self.store.update_where(
                "proposals",
                proposal_id,
                lambda current: current.parsed_at is None,
                parsed_at=models.utcnow(),
                **merge_parsed(proposal, parsed),
            )
            if updated is None:
                logger.info("Proposal %s was enriched concurrently; dropping this result", proposal_id)
                return False
            logger.info("Proposal %s parsed (completeness %s)", proposal_id, updated.completeness_score)
            return True
        except LLMResponseDecodeError as e:
            logger.error("Proposal %s: unusable LLM output: %s", proposal_id, e)
        except (LLMGenerationError, ConfigurationError) as e:
            logger.error("Proposal %s: LLM call failed: %s", proposal_id, e)
        except Exception:
            logger.exception("Proposal %s: enrichment failed", proposal_id)
        return False
