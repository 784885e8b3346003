"""Portfolio corpus in `[LABEL] content` format, loaded by process_portfolio_data.py."""

PORTFOLIO_DATA = """
[BIO]
Marvin Romero is a software developer and computer science student with a strong foundation in full-stack development and a keen interest in artificial intelligence and machine learning. He is pursuing a double major in Computer Science and Media Arts and Culture at Occidental College, combining technical expertise with creative thinking.

With experience spanning software engineering internships and co-founding a technology company, Marvin has demonstrated leadership, technical proficiency, and the ability to deliver impactful projects. He is particularly skilled in React, Next.js, Node.js, and Python.

[CONTACT]
Email: marv.a.romero05@gmail.com
Location: Washington DC-Baltimore Area
LinkedIn: https://www.linkedin.com/in/marvin-romero
GitHub: https://github.com/marvcodething
Portfolio Website: https://www.marvinromero.online
Availability: Actively seeking full-time opportunities and interesting projects. Email is the best contact method for professional inquiries.

[EDUCATION]
Occidental College, Los Angeles, California. Double Major in Computer Science and Media Arts and Culture, expected graduation Spring 2027.
Relevant coursework includes Data Structures and Algorithms, Object-Oriented Programming, Web Development, Database Systems, Software Engineering, and Human-Computer Interaction.

[EXPERIENCE]
DOJi - Software Engineering Intern, MarketCanvas (Remote), July 2025 to September 2025. Collaborated with the founding team to develop analytical tools for financial market pattern recognition. Engineered interval-based positioning algorithms and dynamic grid systems using JavaScript, TypeScript, React, and Node.js.

Occidental College Biochemistry Department - Software Engineering Intern, August 2024 to December 2024. Designed a custom scheduling platform using Flask, React, SQLAlchemy, and PostgreSQL. Reduced manual overhead by 50% through automated scheduling.

California Native Vote Project - Web Development Intern, August 2023 to December 2023. Developed interactive data visualization tools using Leaflet.js, D3.js, and Python.

The Confracted Company - Co-Founder, CTO, and Creative Director, 2025 to present. Led website development using Next.js, TailwindCSS, PostgreSQL, and MedusaJS.

[SKILLS]
Programming Languages: JavaScript and TypeScript (Advanced), Python (Advanced), Java (Intermediate), SQL (Intermediate), C# (Beginner), HTML and CSS (Advanced).
Frameworks: React and Next.js, Node.js and Express.js, Flask, FastAPI, RESTful API design.
Cloud and Infrastructure: Docker, AWS ECS, Redis, Supabase, PostgreSQL, MongoDB, SQLAlchemy.
AI and ML Tools: TensorFlow, PyTorch, Scikit-Learn, BERT models, LLM APIs, RAG pipelines.
Development Tools: Git and GitHub, Figma, CI/CD, Agile development.

[PROJECTS]
StudySpot - Founder and Product Lead, May 2025 to present. Implemented a scalable architecture with FastAPI, Supabase, Docker, AWS ECS, and Redis. Led the product roadmap with LLM and semantic search integration.

AI-Powered Legal Contract Analysis Platform. An open-source legal contract analysis platform with a multi-agent FastAPI backend combining fine-tuned BERT models, LLMs, and retrieval-augmented generation pipelines.

stomping ground Interactive Experience. Managed end-to-end development of a spatial web documentary using Next.js and Phaser.js, reaching 500+ viewers in the first month.

Loan Calculator. A financial planning tool with a React frontend, a Flask backend, and Scikit-Learn models for loan approval predictions.

[ACHIEVEMENTS]
Reduced manual overhead by 50% through an automated scheduling platform. Reached 500+ viewers in the first month for stomping ground. Published an open-source legal contract analysis platform on GitHub.

[LEADERSHIP]
ROSE Union Web Team Lead. Led development of the official union website and coordinated with union leadership on communication tools.
Student-Athlete Mentor Program - Lead Ambassador and Mentor (2022). Mentored children academically and socially through weekly sessions.

[INTERESTS]
Artificial intelligence and machine learning applications, game development and interactive storytelling, photography and visual arts, music production, hackathons, open-source contributions, and mental health advocacy.
"""
