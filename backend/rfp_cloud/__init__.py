"""RFP Cloud: RFP dispatch, inbound proposal ingestion and ranking."""
