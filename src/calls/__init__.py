"""Call session state machine and signaling relay.

Webhook events and client actions both end up here:
platform webhook -> dispatcher -> {session store, signaling client, fan-out}
client action    -> call actions -> {signaling client, session store, fan-out}
"""
