"""Pure domain layer: values, policies and state machines.  Zero I/O."""
