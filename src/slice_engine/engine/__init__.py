"""Planning and execution: join paths, dependency levels, plan selection and evaluation."""
