"""
Chat Service package for the Chat Relay.

The service fronts the chat UI, enforcing:
- Authentication: Firebase ID tokens verified against Google's JWKS
- Rate limiting: per-user sliding window shared through Redis
- Relay: one call to the upstream generation API per admitted message
- Audit: best-effort exchange log in Firestore

Structure:
- app.main: FastAPI app, routes and lifecycle wiring.
- app.auth: Firebase token verification.
- app.ratelimit: Sliding-window admission gate.
- app.adapters: Generation API client and Firestore recorder.
- app.domain: The request pipeline sequencing the above.
"""
