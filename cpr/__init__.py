"""Control-plane recovery (CPR).

Post-rollback recovery for a single control-plane node:
 - restore backed-up images, /usr/local, /etc and cluster data
 - confirm control-plane containers were really replaced after the restore
 - force and confirm a new revision rollout of operator-managed components

Every run, step and event is journaled in SQLite and exposed read-only over HTTP.
"""
