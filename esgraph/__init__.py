"""Serve elastic indices as a federated GraphQL subgraph"""
