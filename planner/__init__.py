"""Course planner backend – offline-first replication of planner collections."""
