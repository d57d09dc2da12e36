"""HTTP routers: todos CRUD, analytics, and transactional bulk operations."""
