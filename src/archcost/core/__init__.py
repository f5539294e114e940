"""Estimation engine: graph, expressions, rates, resolver, aggregator."""
