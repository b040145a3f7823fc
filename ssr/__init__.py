"""Swarm Stack Reconciler (SSR).

Brings a Docker Swarm host in line with a directory of service definitions:
 - discovers service directories (local or on the remote checkout)
 - recreates per-service secrets from ``.env`` files without touching secrets
   that a running service still references
 - builds images where a build context exists
 - deploys each service as a stack under its directory name

All effects on the host go through a single SSH command channel.
"""
