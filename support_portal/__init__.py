"""Client support portal: tickets, hours, knowledge base and ops for a support agency."""
