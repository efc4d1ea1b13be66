"""Evidence collectors: the contract and fixture-backed stand-ins."""
