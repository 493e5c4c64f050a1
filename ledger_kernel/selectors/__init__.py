"""Read-only query helpers.  Selectors never add, flush or lock rows."""
